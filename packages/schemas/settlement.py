"""Ring batch, expectation and report schemas for settlement verification."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from packages.balance_book import BalanceBook
from packages.schemas.order import Order


def predecessor_position(position: int, ring_size: int) -> int:
    """Position of the order whose bought leg feeds the order at `position`."""
    if ring_size <= 0:
        raise ValueError("ring must contain at least one order")
    return (position - 1 + ring_size) % ring_size


class OrderExpectation(BaseModel):
    """Expected outcome for one order within one ring."""

    filled_fraction: Decimal = Field(
        ...,
        description="Fraction of the order filled in this ring",
        ge=Decimal("0"),
        le=Decimal("1"),
    )
    p2p: bool = Field(
        default=False,
        description="Settle with per-asset percentage fees",
    )
    margin: Optional[int] = Field(
        default=None,
        description="Expected margin (splitS) in base units",
    )

    model_config = {"frozen": True}


class RingExpectation(BaseModel):
    """Expected outcome for one ring."""

    fail: bool = False
    orders: list[OrderExpectation] = Field(default_factory=list)

    model_config = {"frozen": True}


class TransactionExpectation(BaseModel):
    """Expected outcome for a whole batch submission."""

    revert: bool = False
    revert_message: Optional[str] = None
    rings: list[RingExpectation] = Field(default_factory=list)

    model_config = {"frozen": True}


class RingBatch(BaseModel):
    """
    A set of rings submitted together.

    Rings hold indices into `orders`; the same order may appear in
    several rings.
    """

    description: Optional[str] = None
    fee_recipient: Optional[str] = None
    miner: Optional[str] = None
    transaction_origin: Optional[str] = None
    orders: list[Order] = Field(default_factory=list)
    rings: list[list[int]] = Field(default_factory=list)
    expected: Optional[TransactionExpectation] = None

    @model_validator(mode="after")
    def validate_rings(self) -> "RingBatch":
        """Validate ring indices and expectation shape."""
        for r, ring in enumerate(self.rings):
            if not ring:
                raise ValueError(f"ring {r} is empty")
            for index in ring:
                if not 0 <= index < len(self.orders):
                    raise ValueError(
                        f"ring {r} references order {index} outside of {len(self.orders)} orders"
                    )

        if self.expected is not None and not self.expected.revert:
            if len(self.expected.rings) != len(self.rings):
                raise ValueError(
                    f"expected {len(self.rings)} ring expectations, "
                    f"got {len(self.expected.rings)}"
                )
            for r, (ring, ring_expectation) in enumerate(
                zip(self.rings, self.expected.rings)
            ):
                if not ring_expectation.fail and len(ring_expectation.orders) != len(ring):
                    raise ValueError(
                        f"ring {r} has {len(ring)} orders but "
                        f"{len(ring_expectation.orders)} order expectations"
                    )

        return self

    @property
    def effective_fee_recipient(self) -> Optional[str]:
        """Address receiving the miner's share and the margin."""
        return self.fee_recipient or self.transaction_origin


class FeePayment(BaseModel):
    """A single fee credit produced while distributing a fee."""

    token: str
    owner: str
    amount: int = Field(..., gt=0)

    model_config = {"frozen": True}


class OrderSettlement(BaseModel):
    """Fill amounts, fees and rebates computed for one order in one ring."""

    amount_s: int
    amount_b: int
    amount_fee: int = 0
    amount_fee_s: int = 0
    amount_fee_b: int = 0
    rebate_fee: int = 0
    rebate_s: int = 0
    rebate_b: int = 0
    split_s: int

    model_config = {"frozen": True}

    @property
    def total_s(self) -> int:
        """Amount of tokenS leaving the owner."""
        return self.amount_s - self.rebate_s

    @property
    def total_b(self) -> int:
        """Amount of tokenB reaching the recipient."""
        return self.amount_b - self.amount_fee_b + self.rebate_b

    @property
    def total_fee(self) -> int:
        """Amount of the fee token leaving the owner."""
        return self.amount_fee - self.rebate_fee


@dataclass
class SettlementReport:
    """Execution trace reported for a batch.

    Attributes:
        reverted: Whether the submission reverted
        revert_message: Revert reason, if any
        balances_before: Principal balances before settlement
        balances_after: Principal balances after settlement
        fee_balances_before: Fee-holder balances before settlement
        fee_balances_after: Fee-holder balances after settlement
        filled_amounts_before: Filled amount per order hash before settlement
        filled_amounts_after: Filled amount per order hash after settlement
    """
    reverted: bool = False
    revert_message: Optional[str] = None
    balances_before: BalanceBook = field(default_factory=BalanceBook)
    balances_after: BalanceBook = field(default_factory=BalanceBook)
    fee_balances_before: BalanceBook = field(default_factory=BalanceBook)
    fee_balances_after: BalanceBook = field(default_factory=BalanceBook)
    filled_amounts_before: dict[str, int] = field(default_factory=dict)
    filled_amounts_after: dict[str, int] = field(default_factory=dict)
