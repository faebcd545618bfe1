"""Order schema for the settlement simulator.

Defines the fixed order format accepted by the protocol, together with the
per-order mutable state (validation result, spendable caches) that
validation and simulation accumulate on it.
"""

from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, Field

from packages.protocol_config import DEFAULT_TRANCHE, ZERO_ADDRESS


class TokenType(IntEnum):
    """Token standard of an order leg."""

    ERC20 = 0  # Plain fungible token
    ERC1400 = 1  # Tranche-partitioned security token


class SignAlgorithm(IntEnum):
    """Signing algorithm tag carried by a signature blob."""

    ETHEREUM = 0  # Raw message signing (eth_sign)
    EIP712 = 1  # Structured typed-data signing
    NONE = 255  # Not signed


class SpendableLeg(str, Enum):
    """Asset of an order that balance can be reserved on."""

    S = "S"  # Token sold
    FEE = "FEE"  # Fee token


class Signature(BaseModel):
    """Signature blob tagged with its signing algorithm."""

    algorithm: SignAlgorithm = SignAlgorithm.ETHEREUM
    data: str = Field(..., description="Hex-encoded signature bytes", min_length=1)

    model_config = {"frozen": True}


class Spendable(BaseModel):
    """Lazily filled balance cache for one asset of one order.

    `amount` is fetched from the ledger on first use; `reserved` accumulates
    provisional commitments until the reservations are reset.
    """

    initialized: bool = False
    amount: int = 0
    reserved: int = 0

    @property
    def available(self) -> int:
        return self.amount - self.reserved


class ValidationResult(BaseModel):
    """Accumulated outcome of order validity checks.

    Every failing check appends its reason; a result never becomes valid
    again once a reason has been recorded.
    """

    reasons: list[str] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.reasons

    def require(self, condition: bool, reason: str) -> bool:
        """Record `reason` unless `condition` holds.

        Returns:
            The condition, so checks can be chained.
        """
        if not condition:
            self.reasons.append(reason)
        return condition

    def merge(self, other: "ValidationResult") -> None:
        """Fold another result's failures into this one."""
        for reason in other.reasons:
            if reason not in self.reasons:
                self.reasons.append(reason)

    @property
    def summary(self) -> str:
        return "; ".join(self.reasons) if self.reasons else "valid"


class Order(BaseModel):
    """
    Signed intent to exchange `amount_s` of `token_s` for `amount_b` of `token_b`.

    Optional fields stay None when not supplied; `canonicalize` derives the
    zero-filled values used for hashing and validation. The fields after
    `dual_auth_sig` are state mutated by validation and simulation.
    """

    version: int = 0

    owner: Optional[str] = None
    token_s: Optional[str] = None
    token_b: Optional[str] = None
    amount_s: int = Field(default=0, ge=0)
    amount_b: int = Field(default=0, ge=0)
    valid_since: int = Field(default=0, ge=0)
    valid_until: Optional[int] = Field(default=None, ge=0)

    dual_auth_addr: Optional[str] = None
    broker: Optional[str] = None
    order_interceptor: Optional[str] = None
    wallet_addr: Optional[str] = None
    token_recipient: Optional[str] = None
    all_or_none: bool = False

    fee_token: Optional[str] = None
    fee_amount: int = Field(default=0, ge=0)
    waive_fee_percentage: int = Field(default=0, ge=-0xFFFF, le=0xFFFF)
    token_s_fee_percentage: int = Field(default=0, ge=0, le=0xFFFF)
    token_b_fee_percentage: int = Field(default=0, ge=0, le=0xFFFF)
    wallet_split_percentage: int = Field(default=0, ge=0, le=0xFFFF)

    token_type_s: TokenType = TokenType.ERC20
    token_type_b: TokenType = TokenType.ERC20
    token_type_fee: TokenType = TokenType.ERC20
    tranche_s: Optional[str] = None
    tranche_b: Optional[str] = None
    transfer_data_s: Optional[str] = None

    sig: Optional[Signature] = None
    dual_auth_sig: Optional[Signature] = None

    p2p: bool = False
    filled_amount_s: int = Field(default=0, ge=0)
    broker_interceptor: Optional[str] = None
    hash: Optional[bytes] = None
    validation: ValidationResult = Field(default_factory=ValidationResult)

    token_spendable_s: Spendable = Field(default_factory=Spendable)
    token_spendable_fee: Spendable = Field(default_factory=Spendable)
    broker_spendable_s: Spendable = Field(default_factory=Spendable)
    broker_spendable_fee: Spendable = Field(default_factory=Spendable)

    @property
    def valid(self) -> bool:
        return self.validation.valid

    @property
    def hash_hex(self) -> str:
        if self.hash is None:
            raise ValueError("order hash has not been computed")
        return "0x" + self.hash.hex()

    @property
    def recipient(self) -> Optional[str]:
        """Address credited with bought tokens."""
        return self.token_recipient or self.owner

    @property
    def effective_tranche_s(self) -> str:
        return self.tranche_s or DEFAULT_TRANCHE

    @property
    def effective_tranche_b(self) -> str:
        return self.tranche_b or DEFAULT_TRANCHE


class CanonicalOrder(BaseModel):
    """Order fields with every optional value filled with its default."""

    amount_s: int
    amount_b: int
    fee_amount: int
    valid_since: int
    valid_until: int
    owner: str
    token_s: str
    token_b: str
    dual_auth_addr: str
    broker: str
    order_interceptor: str
    wallet: str
    token_recipient: str
    fee_token: str
    wallet_split_percentage: int
    token_s_fee_percentage: int
    token_b_fee_percentage: int
    all_or_none: bool
    token_type_s: TokenType
    token_type_b: TokenType
    token_type_fee: TokenType
    tranche_s: str
    tranche_b: str
    transfer_data_s: str

    model_config = {"frozen": True}


def _address(value: Optional[str]) -> str:
    return value.lower() if value else ZERO_ADDRESS


def canonicalize(order: Order) -> CanonicalOrder:
    """Derive the zero-filled field values of an order.

    Two orders that differ only in whether a default was supplied
    explicitly or omitted canonicalize identically. The broker and the
    token recipient default to the owner.
    """
    return CanonicalOrder(
        amount_s=order.amount_s,
        amount_b=order.amount_b,
        fee_amount=order.fee_amount,
        valid_since=order.valid_since,
        valid_until=order.valid_until or 0,
        owner=_address(order.owner),
        token_s=_address(order.token_s),
        token_b=_address(order.token_b),
        dual_auth_addr=_address(order.dual_auth_addr),
        broker=_address(order.broker or order.owner),
        order_interceptor=_address(order.order_interceptor),
        wallet=_address(order.wallet_addr),
        token_recipient=_address(order.token_recipient or order.owner),
        fee_token=_address(order.fee_token),
        wallet_split_percentage=order.wallet_split_percentage,
        token_s_fee_percentage=order.token_s_fee_percentage,
        token_b_fee_percentage=order.token_b_fee_percentage,
        all_or_none=order.all_or_none,
        token_type_s=order.token_type_s,
        token_type_b=order.token_type_b,
        token_type_fee=order.token_type_fee,
        tranche_s=(order.tranche_s or DEFAULT_TRANCHE).lower(),
        tranche_b=(order.tranche_b or DEFAULT_TRANCHE).lower(),
        transfer_data_s=(order.transfer_data_s or "0x").lower(),
    )
