"""Ledger package for the settlement simulator.

This package provides the collaborator interfaces the core consumes and an
in-memory implementation for testing.
"""

from .adapter import (
    BrokerInterceptor,
    BrokerRegistry,
    BurnRateTable,
    LedgerQueryError,
    OrderBook,
    OrderRegistry,
    SecurityTokenLedger,
    SignatureVerifier,
    TokenLedger,
    pack_burn_rate,
    unpack_burn_rate,
)
from .fake import FakeBrokerInterceptor, FakeLedger

__all__ = [
    "BrokerInterceptor",
    "BrokerRegistry",
    "BurnRateTable",
    "FakeBrokerInterceptor",
    "FakeLedger",
    "LedgerQueryError",
    "OrderBook",
    "OrderRegistry",
    "SecurityTokenLedger",
    "SignatureVerifier",
    "TokenLedger",
    "pack_burn_rate",
    "unpack_burn_rate",
]
