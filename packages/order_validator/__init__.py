"""Order validator package.

Validates orders for settlement, computes their canonical hashes and
tracks spendable balances with reservations.
"""

from packages.order_validator.hashing import (
    HashFunction,
    OrderHasher,
    sha3_256,
    to_typed_data,
)
from packages.order_validator.validator import (
    OrderValidator,
    ReservationError,
    SpendableInvariantError,
)
from packages.schemas import ValidationResult

__all__ = [
    "HashFunction",
    "OrderHasher",
    "OrderValidator",
    "ReservationError",
    "SpendableInvariantError",
    "ValidationResult",
    "sha3_256",
    "to_typed_data",
]
