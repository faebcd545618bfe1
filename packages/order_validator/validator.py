"""Order validation and spendable-balance accounting.

Decides whether an order may take part in settlement and tracks how much
of each asset an order can still commit while a batch of rings is
evaluated together.
"""

from typing import Iterable, Optional

from packages.ledger import (
    BrokerInterceptor,
    BrokerRegistry,
    LedgerQueryError,
    OrderBook,
    OrderRegistry,
    SecurityTokenLedger,
    SignatureVerifier,
    TokenLedger,
)
from packages.order_validator.hashing import OrderHasher
from packages.protocol_config import (
    DEFAULT_TRANCHE,
    ZERO_ADDRESS,
    ProtocolConfig,
    get_protocol_config,
)
from packages.schemas import (
    Order,
    Spendable,
    SpendableLeg,
    TokenType,
    ValidationResult,
)
from packages.structured_logging import get_logger


logger = get_logger(__name__)


class SpendableInvariantError(Exception):
    """Raised when a spendable figure drops below zero after reservations."""

    def __init__(self, message: str, token: str, owner: str, amount: int, reserved: int):
        super().__init__(message)
        self.token = token
        self.owner = owner
        self.amount = amount
        self.reserved = reserved


class ReservationError(SpendableInvariantError):
    """Raised when a reservation exceeds what an order can still spend."""
    pass


class OrderValidator:
    """Validates orders and accounts for their spendable balances.

    Validation failures never raise: they are recorded on the order's
    validation result so a batch surfaces every violation. Spendable
    invariant violations raise and abort the pass.
    """

    def __init__(
        self,
        token_ledger: TokenLedger,
        security_token_ledger: SecurityTokenLedger,
        broker_registry: BrokerRegistry,
        broker_interceptor: BrokerInterceptor,
        signature_verifier: SignatureVerifier,
        order_registry: OrderRegistry,
        order_book: OrderBook,
        hasher: Optional[OrderHasher] = None,
        config: Optional[ProtocolConfig] = None,
    ):
        self.token_ledger = token_ledger
        self.security_token_ledger = security_token_ledger
        self.broker_registry = broker_registry
        self.broker_interceptor = broker_interceptor
        self.signature_verifier = signature_verifier
        self.order_registry = order_registry
        self.order_book = order_book
        self.config = config or get_protocol_config()
        self.hasher = hasher or OrderHasher(config=self.config)

    def _record(self, order: Order, result: ValidationResult) -> ValidationResult:
        """Fold a check result into the order and log its failures."""
        order.validation.merge(result)
        if not result.valid:
            logger.warning(
                "order_validation_failed",
                owner=order.owner,
                order_hash=order.hash_hex if order.hash is not None else None,
                reasons=result.reasons,
            )
        return result

    # Preparation

    def compute_hash(self, order: Order) -> bytes:
        """Compute and store the canonical hash of an order."""
        order.hash = self.hasher.hash_order(order)
        return order.hash

    def check_p2p(self, order: Order) -> bool:
        """Mark an order peer-to-peer when it charges per-asset fees."""
        order.p2p = order.token_s_fee_percentage > 0 or order.token_b_fee_percentage > 0
        return order.p2p

    def resolve_broker(self, order: Order) -> ValidationResult:
        """Resolve the broker acting for an order.

        An order without a broker is self-brokered. Otherwise the
        (owner, broker) pair must be registered. The registered interceptor
        is left unused; only an interceptor set on the order caps spending.
        """
        result = ValidationResult()
        if not order.broker:
            order.broker = order.owner
            return result

        registered, _ = self.broker_registry.get_broker(order.owner, order.broker)
        result.require(registered, "order broker is not registered")

        return self._record(order, result)

    # Static checks

    def validate(
        self,
        order: Order,
        now_timestamp: int,
        fee_percentage_base: Optional[int] = None,
    ) -> ValidationResult:
        """Check an order's fields against protocol constants.

        Every check runs even after a failure so all violations are
        reported together.

        Args:
            order: Order to validate
            now_timestamp: Reference timestamp for the validity window
            fee_percentage_base: Percentage denominator (defaults to config)

        Returns:
            ValidationResult of this call (also merged into the order)
        """
        base = fee_percentage_base or self.config.fee_percentage_base
        result = ValidationResult()

        result.require(order.version == self.config.order_version, "unsupported order version")
        result.require(bool(order.owner), "invalid order owner")
        result.require(bool(order.token_s), "invalid order tokenS")
        result.require(bool(order.token_b), "invalid order tokenB")
        result.require(order.amount_s != 0, "invalid order amountS")
        result.require(order.amount_b != 0, "invalid order amountB")
        result.require(bool(order.fee_token), "invalid feeToken")
        result.require(
            order.token_type_fee != TokenType.ERC1400,
            "feeToken cannot be a security token",
        )

        result.require(
            -base <= order.waive_fee_percentage < base,
            "invalid waive percentage",
        )
        result.require(0 <= order.token_s_fee_percentage < base, "invalid tokenS percentage")
        result.require(
            not (order.token_s_fee_percentage > 0 and order.token_type_s == TokenType.ERC1400),
            "tokenS fee percentage on a security token",
        )
        result.require(0 <= order.token_b_fee_percentage < base, "invalid tokenB percentage")
        result.require(
            not (order.token_b_fee_percentage > 0 and order.token_type_b == TokenType.ERC1400),
            "tokenB fee percentage on a security token",
        )
        result.require(
            order.wallet_split_percentage <= self.config.wallet_split_base,
            "invalid wallet split percentage",
        )

        if order.dual_auth_addr:
            result.require(order.dual_auth_sig is not None, "missing dual author signature")

        # Tranches and transfer data only apply to security token legs
        if order.token_type_s == TokenType.ERC20:
            result.require(order.effective_tranche_s == DEFAULT_TRANCHE, "invalid trancheS")
            result.require(
                order.transfer_data_s in (None, "", "0x"),
                "invalid transferDataS",
            )
        if order.token_type_b == TokenType.ERC20:
            result.require(order.effective_tranche_b == DEFAULT_TRANCHE, "invalid trancheB")

        result.require(order.valid_since <= now_timestamp, "order is too early to match")
        result.require(
            not order.valid_until or order.valid_until > now_timestamp,
            "order is expired",
        )

        return self._record(order, result)

    def check_all_or_none(self, order: Order) -> ValidationResult:
        """An all-or-none order must be filled completely."""
        result = ValidationResult()
        if order.all_or_none:
            result.require(
                order.filled_amount_s == order.amount_s,
                "allOrNone not completely filled",
            )
        return self._record(order, result)

    # Signatures

    def check_broker_signature(self, order: Order) -> ValidationResult:
        """Check the broker's authorization of an order.

        Partially filled orders were already authorized. Unsigned orders
        must be registered on chain, either as a pre-approved hash or as
        an order book submission.
        """
        result = ValidationResult()
        if order.hash is None:
            self.compute_hash(order)
        broker = order.broker or order.owner

        if order.filled_amount_s > 0:
            signature_valid = True
        elif order.sig is None:
            is_registered = self.order_registry.is_order_hash_registered(broker, order.hash_hex)
            is_onchain = self.order_book.is_order_submitted(order.hash_hex)
            signature_valid = is_registered or is_onchain
        else:
            signature_valid = self.signature_verifier.verify_signature(
                broker, order.hash, order.sig
            )

        result.require(signature_valid, "invalid order signature")
        return self._record(order, result)

    def check_dual_auth_signature(self, order: Order, mining_hash: bytes) -> ValidationResult:
        """Check the dual-auth signature over the ring's mining hash."""
        result = ValidationResult()
        if order.dual_auth_sig is not None:
            signature_valid = self.signature_verifier.verify_signature(
                order.dual_auth_addr or ZERO_ADDRESS, mining_hash, order.dual_auth_sig
            )
            result.require(signature_valid, "invalid order dual auth signature")
        return self._record(order, result)

    def prepare_order(self, order: Order, now_timestamp: int) -> ValidationResult:
        """Hash, classify, resolve and validate an order in one go.

        The hash is computed before the broker is resolved, so it covers
        the broker field as supplied.

        Returns:
            The order's accumulated validation result
        """
        self.compute_hash(order)
        self.check_p2p(order)
        self.resolve_broker(order)
        self.validate(order, now_timestamp)
        self.check_broker_signature(order)

        logger.debug(
            "order_prepared",
            order_hash=order.hash_hex,
            owner=order.owner,
            p2p=order.p2p,
            valid=order.valid,
        )
        return order.validation

    def prepare_orders(self, orders: Iterable[Order], now_timestamp: int) -> list[Order]:
        """Prepare every order and return the ones that remain valid."""
        return [
            order for order in orders
            if self.prepare_order(order, now_timestamp).valid
        ]

    # Spendable balances

    def get_token_spendable(
        self,
        token_type: TokenType,
        token: str,
        tranche: Optional[str],
        owner: str,
    ) -> int:
        """Ledger amount the trade delegate may move for owner."""
        spender = self.config.trade_delegate_address
        if token_type == TokenType.ERC20:
            balance = self.token_ledger.get_balance(token, owner)
            allowance = self.token_ledger.get_allowance(token, owner, spender)
            return min(balance, allowance)

        tranche = tranche or DEFAULT_TRANCHE
        is_operator = self.security_token_ledger.is_operator_for(token, spender, owner)
        if not is_operator:
            is_operator = self.security_token_ledger.is_operator_for_tranche(
                token, tranche, spender, owner
            )
        if not is_operator:
            return 0
        return self.security_token_ledger.get_tranche_balance(token, tranche, owner)

    def get_broker_allowance(
        self,
        token: str,
        owner: str,
        broker: str,
        broker_interceptor: str,
    ) -> int:
        """Allowance granted to a broker by its interceptor, zero if the query fails."""
        try:
            return self.broker_interceptor.get_allowance(
                broker_interceptor, owner, broker, token
            )
        except LedgerQueryError as e:
            logger.warning(
                "broker_allowance_unavailable",
                token=token,
                owner=owner,
                broker=broker,
                interceptor=broker_interceptor,
                error=str(e),
            )
            return 0

    def get_spendable(
        self,
        token_type: TokenType,
        tranche: Optional[str],
        token: str,
        owner: str,
        broker: Optional[str],
        broker_interceptor: Optional[str],
        spendable_cache: Spendable,
        broker_spendable_cache: Spendable,
    ) -> int:
        """Amount still spendable after reservations.

        Ledger figures are fetched on first use and cached on the order.
        With a broker interceptor the result is capped by the broker's
        remaining allowance.

        Raises:
            SpendableInvariantError: If a figure is negative after reservations
        """
        if not spendable_cache.initialized:
            spendable_cache.amount = self.get_token_spendable(token_type, token, tranche, owner)
            spendable_cache.initialized = True

        spendable = spendable_cache.available
        if spendable < 0:
            logger.error(
                "spendable_invariant_violated",
                token=token,
                owner=owner,
                amount=spendable_cache.amount,
                reserved=spendable_cache.reserved,
            )
            raise SpendableInvariantError(
                f"spendable of {token} for {owner} is negative",
                token, owner, spendable_cache.amount, spendable_cache.reserved,
            )

        if broker_interceptor:
            if not broker_spendable_cache.initialized:
                broker_spendable_cache.amount = self.get_broker_allowance(
                    token, owner, broker or owner, broker_interceptor
                )
                broker_spendable_cache.initialized = True

            broker_spendable = broker_spendable_cache.available
            if broker_spendable < 0:
                logger.error(
                    "broker_spendable_invariant_violated",
                    token=token,
                    owner=owner,
                    broker=broker,
                    amount=broker_spendable_cache.amount,
                    reserved=broker_spendable_cache.reserved,
                )
                raise SpendableInvariantError(
                    f"broker spendable of {token} for {owner} is negative",
                    token, owner, broker_spendable_cache.amount, broker_spendable_cache.reserved,
                )
            spendable = min(spendable, broker_spendable)

        return spendable

    def _leg(self, order: Order, leg: SpendableLeg):
        if leg == SpendableLeg.S:
            return (
                order.token_type_s, order.tranche_s, order.token_s,
                order.token_spendable_s, order.broker_spendable_s,
            )
        return (
            order.token_type_fee, DEFAULT_TRANCHE, order.fee_token,
            order.token_spendable_fee, order.broker_spendable_fee,
        )

    def get_leg_spendable(self, order: Order, leg: SpendableLeg) -> int:
        token_type, tranche, token, cache, broker_cache = self._leg(order, leg)
        return self.get_spendable(
            token_type, tranche, token, order.owner, order.broker,
            order.broker_interceptor, cache, broker_cache,
        )

    def get_spendable_s(self, order: Order) -> int:
        return self.get_leg_spendable(order, SpendableLeg.S)

    def get_spendable_fee(self, order: Order) -> int:
        return self.get_leg_spendable(order, SpendableLeg.FEE)

    def reserve(self, order: Order, leg: SpendableLeg, amount: int) -> None:
        """Provisionally commit `amount` of one asset of an order.

        Raises:
            ReservationError: If amount exceeds what is spendable; nothing is reserved
        """
        if amount < 0:
            raise ValueError(f"reservation amount cannot be negative, got {amount}")

        spendable = self.get_leg_spendable(order, leg)
        _, _, token, cache, broker_cache = self._leg(order, leg)
        if amount > spendable:
            logger.error(
                "reservation_exceeds_spendable",
                token=token,
                owner=order.owner,
                leg=leg.value,
                amount=amount,
                spendable=spendable,
            )
            raise ReservationError(
                f"cannot reserve {amount} of {token} for {order.owner}: only {spendable} spendable",
                token, order.owner, cache.amount, cache.reserved,
            )

        cache.reserved += amount
        if order.broker_interceptor:
            broker_cache.reserved += amount

    def reserve_amount_s(self, order: Order, amount: int) -> None:
        self.reserve(order, SpendableLeg.S, amount)

    def reserve_amount_fee(self, order: Order, amount: int) -> None:
        self.reserve(order, SpendableLeg.FEE, amount)

    def reset_reservations(self, order: Order) -> None:
        """Zero every reservation counter of an order."""
        order.token_spendable_s.reserved = 0
        order.token_spendable_fee.reserved = 0
        order.broker_spendable_s.reserved = 0
        order.broker_spendable_fee.reserved = 0
