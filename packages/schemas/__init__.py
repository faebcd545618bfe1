"""Schemas package for the settlement simulator.

This package contains Pydantic models for orders, ring batches,
expectations and settlement results.
"""

from .order import (
    CanonicalOrder,
    Order,
    Signature,
    SignAlgorithm,
    Spendable,
    SpendableLeg,
    TokenType,
    ValidationResult,
    canonicalize,
)
from .settlement import (
    FeePayment,
    OrderExpectation,
    OrderSettlement,
    RingBatch,
    RingExpectation,
    SettlementReport,
    TransactionExpectation,
    predecessor_position,
)

__all__ = [
    # Orders
    "CanonicalOrder",
    "Order",
    "Signature",
    "SignAlgorithm",
    "Spendable",
    "SpendableLeg",
    "TokenType",
    "ValidationResult",
    "canonicalize",
    # Settlement
    "FeePayment",
    "OrderExpectation",
    "OrderSettlement",
    "RingBatch",
    "RingExpectation",
    "SettlementReport",
    "TransactionExpectation",
    "predecessor_position",
]
