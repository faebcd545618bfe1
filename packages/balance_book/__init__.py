"""Balance book for settlement simulation.

Maps (owner, token, tranche) to an integer amount. Used both as the
simulator's working copy of balances and as the reported baseline it is
compared against.
"""

from typing import Dict, Iterator, Optional, Tuple

from packages.protocol_config import DEFAULT_TRANCHE

BalanceKey = Tuple[str, str, str]


class BalanceBook:
    """Accumulating ledger of token balances.

    Unknown balances read as zero. There is no subtraction primitive;
    callers add signed deltas.
    """

    def __init__(self, balances: Optional[Dict[BalanceKey, int]] = None):
        self._balances: Dict[BalanceKey, int] = {}
        if balances:
            for (owner, token, tranche), amount in balances.items():
                self.add_balance(owner, token, amount, tranche)

    def get_balance(self, owner: str, token: str, tranche: str = DEFAULT_TRANCHE) -> int:
        """Get balance, zero when unknown."""
        return self._balances.get((owner, token, tranche), 0)

    def add_balance(
        self,
        owner: str,
        token: str,
        amount: int,
        tranche: str = DEFAULT_TRANCHE,
    ) -> None:
        """Add a (possibly negative) amount to a balance.

        Args:
            owner: Balance owner address
            token: Token address
            amount: Signed amount to add
            tranche: Tranche identifier (default tranche for fungible tokens)

        Raises:
            ValueError: If owner, token or tranche is missing
        """
        if not owner or not token or not tranche:
            raise ValueError(
                f"owner, token and tranche are required (got {owner!r}, {token!r}, {tranche!r})"
            )
        key = (owner, token, tranche)
        self._balances[key] = self._balances.get(key, 0) + int(amount)

    def is_balance_known(self, owner: str, token: str, tranche: str = DEFAULT_TRANCHE) -> bool:
        """Check whether a balance was ever recorded."""
        return (owner, token, tranche) in self._balances

    def copy(self) -> "BalanceBook":
        """Independent copy of this book."""
        book = BalanceBook()
        book._balances = dict(self._balances)
        return book

    def keys(self) -> Iterator[BalanceKey]:
        return iter(self._balances.keys())

    def items(self) -> Iterator[Tuple[BalanceKey, int]]:
        return iter(self._balances.items())

    def to_dict(self) -> Dict[str, Dict[str, Dict[str, str]]]:
        """Nested owner -> token -> tranche view for logging and API output."""
        data: Dict[str, Dict[str, Dict[str, str]]] = {}
        for (owner, token, tranche), amount in self._balances.items():
            data.setdefault(owner, {}).setdefault(token, {})[tranche] = str(amount)
        return data

    def __len__(self) -> int:
        return len(self._balances)

    def __contains__(self, key: BalanceKey) -> bool:
        return key in self._balances

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BalanceBook):
            return NotImplemented
        return self._balances == other._balances

    def __repr__(self) -> str:
        return f"BalanceBook({len(self._balances)} balances)"


__all__ = ["BalanceBook", "BalanceKey"]
