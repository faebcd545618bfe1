"""Ring settlement package.

Provides deterministic settlement simulation of order rings and
verification of reported execution traces.
"""

from packages.ring_settlement.models import (
    FeeConservationError,
    FeeDistribution,
    VerificationError,
    VerificationResult,
)
from packages.ring_settlement.simulator import RingSettlementSimulator, fill_amount

__all__ = [
    "FeeConservationError",
    "FeeDistribution",
    "RingSettlementSimulator",
    "VerificationError",
    "VerificationResult",
    "fill_amount",
]
