"""
Reconciliation of simulated settlement against a reported execution trace.

This module compares the simulator's expected post-settlement state with
the reported one:
- Principal balances per (owner, token, tranche)
- Fee balances per (owner, token)
- Filled amounts per order hash

Amounts are compared at a fixed precision after descaling, so dust below
that precision is not reported.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, localcontext
from enum import Enum
from typing import Dict, List, Mapping, Optional

from packages.balance_book import BalanceBook
from packages.protocol_config import ProtocolConfig, get_protocol_config
from packages.structured_logging import get_logger

logger = get_logger(__name__)


class DiscrepancyType(Enum):
    """Type of settlement discrepancy."""
    REVERT_MISMATCH = "revert_mismatch"  # Reported revert status differs
    BALANCE_MISMATCH = "balance_mismatch"  # Principal balance differs
    FEE_BALANCE_MISMATCH = "fee_balance_mismatch"  # Fee balance differs
    FILLED_AMOUNT_MISMATCH = "filled_amount_mismatch"  # Filled amount differs
    MARGIN_MISMATCH = "margin_mismatch"  # Computed margin differs from expectation


@dataclass
class Discrepancy:
    """Represents a single settlement discrepancy."""
    type: DiscrepancyType
    description: str
    expected_value: Optional[object] = None
    actual_value: Optional[object] = None
    token: Optional[str] = None
    owner: Optional[str] = None
    tranche: Optional[str] = None
    order_hash: Optional[str] = None
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def location(self) -> str:
        """Where the discrepancy was found."""
        if self.order_hash is not None:
            return f"order {self.order_hash}"
        if self.token is not None or self.owner is not None:
            return f"token {self.token} owner {self.owner}"
        return "transaction"

    def to_dict(self) -> Dict:
        """Convert to dictionary for logging."""
        return {
            "type": self.type.value,
            "description": self.description,
            "expected_value": str(self.expected_value) if self.expected_value is not None else None,
            "actual_value": str(self.actual_value) if self.actual_value is not None else None,
            "token": self.token,
            "owner": self.owner,
            "tranche": self.tranche,
            "order_hash": self.order_hash,
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass
class ReconciliationResult:
    """Result of a reconciliation check."""
    timestamp: datetime
    is_reconciled: bool
    discrepancies: List[Discrepancy]
    balances_checked: int
    fee_balances_checked: int
    orders_checked: int
    duration_ms: float

    @property
    def discrepancy_count(self) -> int:
        """Total number of discrepancies."""
        return len(self.discrepancies)

    def to_dict(self) -> Dict:
        """Convert to dictionary for logging."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "is_reconciled": self.is_reconciled,
            "discrepancy_count": self.discrepancy_count,
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "summary": {
                "balances_checked": self.balances_checked,
                "fee_balances_checked": self.fee_balances_checked,
                "orders_checked": self.orders_checked,
            },
            "duration_ms": self.duration_ms,
        }


def to_fixed(value: int, scale_decimals: int, precision: int) -> Decimal:
    """Descale an integer amount and round it to `precision` fractional digits."""
    with localcontext() as ctx:
        ctx.prec = max(100, len(str(abs(value))) + scale_decimals + precision + 1)
        descaled = Decimal(value).scaleb(-scale_decimals)
        return descaled.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)


class SettlementReconciler:
    """
    Compares expected settlement state with a reported trace.

    Produces one discrepancy per mismatching balance or filled amount,
    naming the owner by its label when one is known.
    """

    def __init__(
        self,
        config: Optional[ProtocolConfig] = None,
        address_labels: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize reconciler.

        Args:
            config: Protocol configuration (scale and comparison precision)
            address_labels: Human-readable names for addresses, used in descriptions
        """
        self.config = config or get_protocol_config()
        self.address_labels = dict(address_labels or {})

    def label(self, address: Optional[str]) -> str:
        """Address with its label, if any."""
        if address is None:
            return "<none>"
        name = self.address_labels.get(address)
        return f"{name} ({address})" if name else address

    def almost_equal(self, first: int, second: int) -> bool:
        """Compare two scaled amounts at the configured precision."""
        scale = self.config.amount_scale_decimals
        precision = self.config.comparison_precision
        return to_fixed(first, scale, precision) == to_fixed(second, scale, precision)

    def reconcile_balances(
        self,
        expected: BalanceBook,
        actual: BalanceBook,
        discrepancy_type: DiscrepancyType = DiscrepancyType.BALANCE_MISMATCH,
    ) -> List[Discrepancy]:
        """Compare every balance known to either book."""
        discrepancies = []
        keys = sorted(set(expected.keys()) | set(actual.keys()))

        for owner, token, tranche in keys:
            expected_amount = expected.get_balance(owner, token, tranche)
            actual_amount = actual.get_balance(owner, token, tranche)
            if not self.almost_equal(actual_amount, expected_amount):
                kind = "Fee balance" if discrepancy_type == DiscrepancyType.FEE_BALANCE_MISMATCH else "Balance"
                discrepancies.append(Discrepancy(
                    type=discrepancy_type,
                    description=(
                        f"{kind} different than expected for {self.label(owner)} "
                        f"in {self.label(token)}: expected={expected_amount}, actual={actual_amount}"
                    ),
                    expected_value=expected_amount,
                    actual_value=actual_amount,
                    token=token,
                    owner=owner,
                    tranche=tranche,
                ))

        return discrepancies

    def reconcile_filled_amounts(
        self,
        expected: Mapping[str, int],
        actual: Mapping[str, int],
    ) -> List[Discrepancy]:
        """Compare filled amounts for every order hash in `expected`."""
        discrepancies = []

        for order_hash in sorted(expected):
            expected_amount = expected[order_hash]
            actual_amount = actual.get(order_hash, 0)
            if not self.almost_equal(actual_amount, expected_amount):
                discrepancies.append(Discrepancy(
                    type=DiscrepancyType.FILLED_AMOUNT_MISMATCH,
                    description=(
                        f"Filled amount different than expected for order {order_hash}: "
                        f"expected={expected_amount}, actual={actual_amount}"
                    ),
                    expected_value=expected_amount,
                    actual_value=actual_amount,
                    order_hash=order_hash,
                ))

        return discrepancies

    def reconcile(
        self,
        expected_balances: BalanceBook,
        actual_balances: BalanceBook,
        expected_fee_balances: BalanceBook,
        actual_fee_balances: BalanceBook,
        expected_filled_amounts: Mapping[str, int],
        actual_filled_amounts: Mapping[str, int],
    ) -> ReconciliationResult:
        """
        Perform full reconciliation check.

        Returns:
            ReconciliationResult with discrepancies
        """
        start_time = datetime.now(timezone.utc)
        discrepancies: List[Discrepancy] = []

        discrepancies.extend(self.reconcile_balances(expected_balances, actual_balances))
        discrepancies.extend(self.reconcile_balances(
            expected_fee_balances,
            actual_fee_balances,
            DiscrepancyType.FEE_BALANCE_MISMATCH,
        ))
        discrepancies.extend(self.reconcile_filled_amounts(
            expected_filled_amounts,
            actual_filled_amounts,
        ))

        duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
        result = ReconciliationResult(
            timestamp=start_time,
            is_reconciled=not discrepancies,
            discrepancies=discrepancies,
            balances_checked=len(set(expected_balances.keys()) | set(actual_balances.keys())),
            fee_balances_checked=len(
                set(expected_fee_balances.keys()) | set(actual_fee_balances.keys())
            ),
            orders_checked=len(expected_filled_amounts),
            duration_ms=duration_ms,
        )

        if not result.is_reconciled:
            logger.error(
                "settlement_reconciliation_failed",
                discrepancy_count=result.discrepancy_count,
                first=discrepancies[0].description,
            )
        return result


__all__ = [
    "Discrepancy",
    "DiscrepancyType",
    "ReconciliationResult",
    "SettlementReconciler",
    "to_fixed",
]
