"""Collaborator protocols consumed by the validator and the simulator.

This module defines the interfaces that ledger, registry and signature
backends must implement. Implementations live outside the core (node
clients, contract bindings); `FakeLedger` implements all of them in memory.
"""

from typing import Protocol, Tuple

from packages.schemas.order import Signature


class LedgerQueryError(Exception):
    """Raised by a collaborator when a query cannot be answered."""
    pass


class TokenLedger(Protocol):
    """Fungible token balances and allowances."""

    def get_balance(self, token: str, owner: str) -> int:
        """Get token balance of owner.

        Raises:
            LedgerQueryError: If the balance cannot be read.
        """
        ...

    def get_allowance(self, token: str, owner: str, spender: str) -> int:
        """Get amount of token spender may move on behalf of owner.

        Raises:
            LedgerQueryError: If the allowance cannot be read.
        """
        ...


class SecurityTokenLedger(Protocol):
    """Tranche-partitioned security token state."""

    def is_operator_for(self, token: str, spender: str, owner: str) -> bool:
        """Check whether spender is an operator for all of owner's tranches."""
        ...

    def is_operator_for_tranche(
        self, token: str, tranche: str, spender: str, owner: str
    ) -> bool:
        """Check whether spender is an operator for one tranche of owner."""
        ...

    def get_tranche_balance(self, token: str, tranche: str, owner: str) -> int:
        """Get owner's balance in one tranche."""
        ...


class BrokerRegistry(Protocol):
    """Registry of brokers allowed to act for an owner."""

    def get_broker(self, owner: str, broker: str) -> Tuple[bool, str]:
        """Look up a broker.

        Returns:
            Tuple of (registered, interceptor address or zero address).
        """
        ...


class BrokerInterceptor(Protocol):
    """Allowance contracts limiting what a broker may spend."""

    def get_allowance(self, interceptor: str, owner: str, broker: str, token: str) -> int:
        """Get amount of token broker may spend for owner.

        Raises:
            LedgerQueryError: If the interceptor cannot be queried.
        """
        ...


class BurnRateTable(Protocol):
    """Per-token packed burn rates."""

    def get_burn_rate(self, token: str) -> int:
        """Get packed burn rate.

        Returns:
            32-bit value: upper 16 bits peer-to-peer rate, lower 16 bits standard rate.
        """
        ...


class SignatureVerifier(Protocol):
    """Signature checking backend."""

    def verify_signature(self, signer: str, message_hash: bytes, signature: Signature) -> bool:
        """Check that signature was produced by signer over message_hash."""
        ...


class OrderRegistry(Protocol):
    """On-chain registry of pre-approved order hashes."""

    def is_order_hash_registered(self, broker: str, order_hash_hex: str) -> bool:
        ...


class OrderBook(Protocol):
    """On-chain order book contract."""

    def is_order_submitted(self, order_hash_hex: str) -> bool:
        ...


def unpack_burn_rate(packed: int, p2p: bool) -> int:
    """Select the peer-to-peer or standard half of a packed burn rate."""
    if packed < 0 or packed > 0xFFFFFFFF:
        raise ValueError(f"burn rate must be a 32-bit value, got {packed}")
    return (packed >> 16) if p2p else (packed & 0xFFFF)


def pack_burn_rate(p2p_rate: int, standard_rate: int) -> int:
    """Pack peer-to-peer and standard burn rates into one value."""
    for rate in (p2p_rate, standard_rate):
        if rate < 0 or rate > 0xFFFF:
            raise ValueError(f"burn rate must fit in 16 bits, got {rate}")
    return (p2p_rate << 16) | standard_rate
