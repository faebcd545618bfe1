"""Protocol constants for the settlement simulator.

This module holds the protocol-level constants the validator and the
settlement simulator agree on, with environment variable overrides.

Usage:
    from packages.protocol_config import get_protocol_config

    config = get_protocol_config()
    fee = amount * pct // config.fee_percentage_base
"""

import os
from dataclasses import dataclass
from threading import Lock
from typing import Optional

__all__ = [
    "DEFAULT_TRANCHE",
    "ProtocolConfig",
    "ProtocolConfigError",
    "ZERO_ADDRESS",
    "get_protocol_config",
    "set_protocol_config",
]


ZERO_ADDRESS = "0x" + "0" * 40
DEFAULT_TRANCHE = "0x" + "0" * 64


class ProtocolConfigError(Exception):
    """Raised when protocol configuration is invalid."""
    pass


@dataclass(frozen=True)
class ProtocolConfig:
    """Protocol constants used by validation and settlement.

    Attributes:
        fee_percentage_base: Denominator for fee, waiver and burn percentages
        order_version: The only supported order version
        wallet_split_base: Denominator for the wallet split percentage
        fee_holder_address: Holder credited with burned fees
        trade_delegate_address: Spender used for allowance and operator queries
        amount_scale_decimals: Decimals amounts are scaled by when compared
        comparison_precision: Fractional digits kept when comparing amounts
        eip712_domain_name: Typed-data domain name used for order hashing
        eip712_domain_version: Typed-data domain version used for order hashing
    """

    fee_percentage_base: int = 1000
    order_version: int = 0
    wallet_split_base: int = 100
    fee_holder_address: str = "0x" + "0" * 37 + "fee"
    trade_delegate_address: str = "0x" + "0" * 38 + "de"
    amount_scale_decimals: int = 18
    comparison_precision: int = 8
    eip712_domain_name: str = "Loopring Protocol"
    eip712_domain_version: str = "2"

    def __post_init__(self) -> None:
        if self.fee_percentage_base <= 0:
            raise ProtocolConfigError(
                f"fee_percentage_base must be positive, got {self.fee_percentage_base}"
            )
        if self.fee_percentage_base > 0xFFFF:
            # Burn rates are packed into 16-bit halves
            raise ProtocolConfigError(
                f"fee_percentage_base must fit in 16 bits, got {self.fee_percentage_base}"
            )
        if self.amount_scale_decimals < 0:
            raise ProtocolConfigError("amount_scale_decimals cannot be negative")
        if self.comparison_precision < 0:
            raise ProtocolConfigError("comparison_precision cannot be negative")

    @classmethod
    def from_env(cls) -> "ProtocolConfig":
        """Load protocol configuration from environment variables.

        Env vars:
            PROTOCOL_FEE_PERCENTAGE_BASE: integer denominator
            PROTOCOL_ORDER_VERSION: supported order version
            PROTOCOL_FEE_HOLDER_ADDRESS: burn holder address
            PROTOCOL_TRADE_DELEGATE_ADDRESS: spender address
            PROTOCOL_AMOUNT_SCALE_DECIMALS: integer decimals
            PROTOCOL_COMPARISON_PRECISION: integer fractional digits

        Returns:
            ProtocolConfig with values from env vars

        Raises:
            ProtocolConfigError: If a value cannot be parsed or is out of range
        """
        def parse_int(name: str, default: int) -> int:
            value = os.getenv(name)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError:
                raise ProtocolConfigError(f"{name} must be an integer, got {value!r}")

        defaults = cls()
        return cls(
            fee_percentage_base=parse_int(
                "PROTOCOL_FEE_PERCENTAGE_BASE", defaults.fee_percentage_base
            ),
            order_version=parse_int("PROTOCOL_ORDER_VERSION", defaults.order_version),
            fee_holder_address=os.getenv(
                "PROTOCOL_FEE_HOLDER_ADDRESS", defaults.fee_holder_address
            ),
            trade_delegate_address=os.getenv(
                "PROTOCOL_TRADE_DELEGATE_ADDRESS", defaults.trade_delegate_address
            ),
            amount_scale_decimals=parse_int(
                "PROTOCOL_AMOUNT_SCALE_DECIMALS", defaults.amount_scale_decimals
            ),
            comparison_precision=parse_int(
                "PROTOCOL_COMPARISON_PRECISION", defaults.comparison_precision
            ),
        )


# Global instance
_config: Optional[ProtocolConfig] = None
_config_lock = Lock()


def get_protocol_config() -> ProtocolConfig:
    """Get global protocol configuration.

    Loaded from environment variables on first access.

    Returns:
        Global ProtocolConfig instance
    """
    global _config

    if _config is None:
        with _config_lock:
            if _config is None:
                _config = ProtocolConfig.from_env()

    return _config


def set_protocol_config(config: Optional[ProtocolConfig]) -> None:
    """Replace global protocol configuration (for testing).

    Args:
        config: New configuration, or None to reload from env on next access
    """
    global _config
    with _config_lock:
        _config = config
