"""Result models for ring settlement simulation."""

from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import BaseModel, Field

from packages.reconciliation import Discrepancy
from packages.schemas import FeePayment, OrderSettlement


class FeeConservationError(Exception):
    """Raised when a fee distribution does not add up to the gross fee."""

    def __init__(self, message: str, token: str, owner: Optional[str], gross_amount: int):
        super().__init__(message)
        self.token = token
        self.owner = owner
        self.gross_amount = gross_amount


class VerificationError(Exception):
    """Raised when a reported settlement does not match the simulation."""

    def __init__(self, reason: str, location: str, discrepancies: List[Discrepancy]):
        super().__init__(f"{reason} at {location}")
        self.reason = reason
        self.location = location
        self.discrepancies = discrepancies


class FeeDistribution(BaseModel):
    """Breakdown of one gross fee into its recipients and the payer's rebate."""

    token: Optional[str] = None
    gross_amount: int = Field(..., ge=0)
    wallet_fee: int = 0
    miner_fee: int = 0
    wallet_burn: int = 0
    miner_burn: int = 0
    wallet_rebate: int = 0
    miner_rebate: int = 0
    redirected: list[FeePayment] = Field(default_factory=list)
    rebate: int = 0

    model_config = {"frozen": True}

    @property
    def total_burn(self) -> int:
        return self.wallet_burn + self.miner_burn

    @property
    def total_redirected(self) -> int:
        return sum(payment.amount for payment in self.redirected)

    @property
    def total_paid(self) -> int:
        """Everything credited to someone other than the payer."""
        return self.wallet_fee + self.miner_fee + self.total_burn + self.total_redirected

    @property
    def is_conserved(self) -> bool:
        # wallet_rebate and miner_rebate are already part of rebate
        parts = (
            self.wallet_fee, self.miner_fee, self.wallet_burn, self.miner_burn,
            self.wallet_rebate, self.miner_rebate, self.rebate,
        )
        return (
            all(part >= 0 for part in parts)
            and self.rebate >= self.wallet_rebate + self.miner_rebate
            and self.total_paid + self.rebate == self.gross_amount
        )


@dataclass
class VerificationResult:
    """Outcome of verifying one batch.

    Attributes:
        passed: Whether the report matches the simulation
        skipped: True when the batch carried no expectation
        reason: Description of the first failure
        location: Where the first failure was found
        discrepancies: Every mismatch found
        settlements: Computed settlement per ring and order position
        fee_payments: Every fee credit produced by the simulation
    """
    passed: bool
    skipped: bool = False
    reason: Optional[str] = None
    location: Optional[str] = None
    discrepancies: List[Discrepancy] = field(default_factory=list)
    settlements: List[List[OrderSettlement]] = field(default_factory=list)
    fee_payments: List[FeePayment] = field(default_factory=list)

    @classmethod
    def failure(cls, discrepancies: List[Discrepancy], **kwargs) -> "VerificationResult":
        first = discrepancies[0]
        return cls(
            passed=False,
            reason=first.description,
            location=first.location,
            discrepancies=discrepancies,
            **kwargs,
        )

    def raise_for_failure(self) -> None:
        """Raise VerificationError if verification failed."""
        if not self.passed:
            raise VerificationError(
                self.reason or "verification failed",
                self.location or "transaction",
                self.discrepancies,
            )
