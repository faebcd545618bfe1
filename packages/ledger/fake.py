"""Fake ledger for testing.

This module provides an in-memory implementation of every collaborator
protocol so validation and settlement can run without a chain node.
"""

import hashlib
from typing import Dict, Optional, Set, Tuple

from packages.protocol_config import ZERO_ADDRESS
from packages.schemas.order import Signature, SignAlgorithm

from .adapter import LedgerQueryError, pack_burn_rate


class FakeLedger:
    """In-memory ledger, registries, burn-rate table and signer.

    Signatures produced by `sign` are deterministic digests of the signer,
    the message hash and the algorithm, and `verify_signature` recomputes
    them.
    """

    def __init__(self) -> None:
        self._balances: Dict[Tuple[str, str], int] = {}
        self._allowances: Dict[Tuple[str, str, str], int] = {}
        self._operators: Set[Tuple[str, str, str]] = set()
        self._tranche_operators: Set[Tuple[str, str, str, str]] = set()
        self._tranche_balances: Dict[Tuple[str, str, str], int] = {}
        self._brokers: Dict[Tuple[str, str], str] = {}
        self._broker_allowances: Dict[Tuple[str, str, str, str], int] = {}
        self._failing_interceptors: Set[str] = set()
        self._burn_rates: Dict[str, int] = {}
        self._registered_hashes: Set[Tuple[str, str]] = set()
        self._submitted_hashes: Set[str] = set()
        self.query_count = 0

    # Fungible tokens

    def set_balance(self, token: str, owner: str, amount: int) -> None:
        self._balances[(token, owner)] = amount

    def set_allowance(self, token: str, owner: str, spender: str, amount: int) -> None:
        self._allowances[(token, owner, spender)] = amount

    def get_balance(self, token: str, owner: str) -> int:
        self.query_count += 1
        return self._balances.get((token, owner), 0)

    def get_allowance(self, token: str, owner: str, spender: str) -> int:
        self.query_count += 1
        return self._allowances.get((token, owner, spender), 0)

    # Security tokens

    def add_operator(self, token: str, spender: str, owner: str) -> None:
        self._operators.add((token, spender, owner))

    def add_tranche_operator(self, token: str, tranche: str, spender: str, owner: str) -> None:
        self._tranche_operators.add((token, tranche, spender, owner))

    def set_tranche_balance(self, token: str, tranche: str, owner: str, amount: int) -> None:
        self._tranche_balances[(token, tranche, owner)] = amount

    def is_operator_for(self, token: str, spender: str, owner: str) -> bool:
        self.query_count += 1
        return (token, spender, owner) in self._operators

    def is_operator_for_tranche(
        self, token: str, tranche: str, spender: str, owner: str
    ) -> bool:
        self.query_count += 1
        return (token, tranche, spender, owner) in self._tranche_operators

    def get_tranche_balance(self, token: str, tranche: str, owner: str) -> int:
        self.query_count += 1
        return self._tranche_balances.get((token, tranche, owner), 0)

    # Brokers

    def register_broker(
        self, owner: str, broker: str, interceptor: Optional[str] = None
    ) -> None:
        self._brokers[(owner, broker)] = interceptor or ZERO_ADDRESS

    def get_broker(self, owner: str, broker: str) -> Tuple[bool, str]:
        if (owner, broker) not in self._brokers:
            return False, ZERO_ADDRESS
        return True, self._brokers[(owner, broker)]

    def set_broker_allowance(
        self, interceptor: str, owner: str, broker: str, token: str, amount: int
    ) -> None:
        self._broker_allowances[(interceptor, owner, broker, token)] = amount

    def fail_interceptor(self, interceptor: str) -> None:
        """Make every allowance query against interceptor fail."""
        self._failing_interceptors.add(interceptor)

    def get_allowance_for_broker(
        self, interceptor: str, owner: str, broker: str, token: str
    ) -> int:
        self.query_count += 1
        if interceptor in self._failing_interceptors:
            raise LedgerQueryError(f"interceptor {interceptor} reverted")
        return self._broker_allowances.get((interceptor, owner, broker, token), 0)

    # Burn rates

    def set_burn_rate(self, token: str, p2p_rate: int = 0, standard_rate: int = 0) -> None:
        self._burn_rates[token] = pack_burn_rate(p2p_rate, standard_rate)

    def get_burn_rate(self, token: str) -> int:
        return self._burn_rates.get(token, 0)

    # Order registries

    def register_order_hash(self, broker: str, order_hash_hex: str) -> None:
        self._registered_hashes.add((broker, order_hash_hex))

    def submit_order_hash(self, order_hash_hex: str) -> None:
        self._submitted_hashes.add(order_hash_hex)

    def is_order_hash_registered(self, broker: str, order_hash_hex: str) -> bool:
        return (broker, order_hash_hex) in self._registered_hashes

    def is_order_submitted(self, order_hash_hex: str) -> bool:
        return order_hash_hex in self._submitted_hashes

    # Signatures

    @staticmethod
    def _digest(signer: str, message_hash: bytes, algorithm: SignAlgorithm) -> str:
        payload = f"{signer.lower()}:{message_hash.hex()}:{int(algorithm)}"
        return "0x" + hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def sign(
        self,
        signer: str,
        message_hash: bytes,
        algorithm: SignAlgorithm = SignAlgorithm.ETHEREUM,
    ) -> Signature:
        """Produce a signature that `verify_signature` accepts."""
        return Signature(algorithm=algorithm, data=self._digest(signer, message_hash, algorithm))

    def verify_signature(self, signer: str, message_hash: bytes, signature: Signature) -> bool:
        if signature.algorithm == SignAlgorithm.NONE:
            return False
        return signature.data == self._digest(signer, message_hash, signature.algorithm)


class FakeBrokerInterceptor:
    """Adapts `FakeLedger` broker allowances to the `BrokerInterceptor` protocol."""

    def __init__(self, ledger: FakeLedger) -> None:
        self._ledger = ledger

    def get_allowance(self, interceptor: str, owner: str, broker: str, token: str) -> int:
        return self._ledger.get_allowance_for_broker(interceptor, owner, broker, token)
