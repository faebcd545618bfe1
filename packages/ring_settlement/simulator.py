"""Ring settlement simulator implementation."""

import math
import uuid
from decimal import Decimal
from fractions import Fraction
from typing import Mapping, Optional

from packages.balance_book import BalanceBook
from packages.ledger import BurnRateTable, unpack_burn_rate
from packages.order_validator import OrderHasher, OrderValidator
from packages.protocol_config import ProtocolConfig, get_protocol_config
from packages.reconciliation import (
    Discrepancy,
    DiscrepancyType,
    SettlementReconciler,
)
from packages.ring_settlement.models import (
    FeeConservationError,
    FeeDistribution,
    VerificationResult,
)
from packages.schemas import (
    FeePayment,
    Order,
    OrderExpectation,
    OrderSettlement,
    RingBatch,
    SettlementReport,
    SpendableLeg,
    TokenType,
    predecessor_position,
)
from packages.structured_logging import bind_batch_id, get_logger

logger = get_logger(__name__)


def fill_amount(amount: int, filled_fraction: Decimal) -> int:
    """Amount filled at a fraction, rounded down."""
    return math.floor(amount * Fraction(filled_fraction))


class RingSettlementSimulator:
    """
    Deterministic ring settlement simulator.

    Recomputes fills, fees, burns and rebates for every order of a batch
    from the expected fill fractions, then checks a reported execution
    trace against the result.
    """

    def __init__(
        self,
        burn_rate_table: BurnRateTable,
        config: Optional[ProtocolConfig] = None,
        order_validator: Optional[OrderValidator] = None,
        rebate_rate: int = 0,
    ):
        """Initialize simulator.

        Args:
            burn_rate_table: Source of per-token burn rates
            config: Protocol configuration
            order_validator: When given, each pass resets and re-reserves the
                orders' spendable balances
            rebate_rate: Share of wallet and miner fees returned to the payer,
                over the fee percentage base (the protocol currently uses 0)
        """
        self.burn_rate_table = burn_rate_table
        self.config = config or get_protocol_config()
        self.order_validator = order_validator
        self.rebate_rate = rebate_rate
        self.hasher = order_validator.hasher if order_validator else OrderHasher(config=self.config)

    def distribute(
        self,
        fee_payments: list[FeePayment],
        ring_orders: list[Order],
        order: Order,
        token: str,
        gross_amount: int,
        wallet_split_percentage: int,
        p2p: bool,
        fee_recipient: Optional[str],
    ) -> FeeDistribution:
        """
        Distribute one fee paid by `order` and return the breakdown.

        The fee is split between wallet and miner, the miner's part is
        reduced by the order's waiver, both parts are burned at the token's
        burn rate, and orders of the ring with a negative waiver take their
        share of what the miner keeps. Payments are appended to
        `fee_payments`; whatever is not paid out is the order's rebate.

        Raises:
            FeeConservationError: If the payments exceed the gross fee
        """
        if gross_amount == 0:
            return FeeDistribution(token=token, gross_amount=0)

        base = self.config.fee_percentage_base

        amount = gross_amount
        if p2p and not order.wallet_addr:
            amount = 0

        wallet_fee = amount * wallet_split_percentage // self.config.wallet_split_base
        miner_fee = amount - wallet_fee

        # A positive waiver is a discount, a negative one skips the miner entirely
        if order.waive_fee_percentage > 0:
            miner_fee = miner_fee * (base - order.waive_fee_percentage) // base
        elif order.waive_fee_percentage < 0:
            miner_fee = 0

        burn_rate = unpack_burn_rate(self.burn_rate_table.get_burn_rate(token), p2p)
        miner_burn = miner_fee * burn_rate // base
        miner_rebate = miner_fee * self.rebate_rate // base
        miner_fee = miner_fee - miner_burn - miner_rebate
        wallet_burn = wallet_fee * burn_rate // base
        wallet_rebate = wallet_fee * self.rebate_rate // base
        fee_to_wallet = wallet_fee - wallet_burn - wallet_rebate

        fee_to_miner = miner_fee
        redirected: list[FeePayment] = []
        if miner_fee > 0:
            redirected_percentage = 0
            for ring_order in ring_orders:
                if ring_order is order or ring_order.waive_fee_percentage >= 0:
                    continue
                fee_to_owner = miner_fee * -ring_order.waive_fee_percentage // base
                if fee_to_owner > 0:
                    redirected.append(
                        FeePayment(token=token, owner=ring_order.owner, amount=fee_to_owner)
                    )
                redirected_percentage += -ring_order.waive_fee_percentage
            fee_to_miner = miner_fee * (base - redirected_percentage) // base

        paid = fee_to_wallet + fee_to_miner + miner_burn + wallet_burn
        paid += sum(payment.amount for payment in redirected)
        distribution = FeeDistribution(
            token=token,
            gross_amount=gross_amount,
            wallet_fee=fee_to_wallet,
            miner_fee=fee_to_miner,
            wallet_burn=wallet_burn,
            miner_burn=miner_burn,
            wallet_rebate=wallet_rebate,
            miner_rebate=miner_rebate,
            redirected=redirected,
            rebate=gross_amount - paid,
        )
        if not distribution.is_conserved:
            logger.error(
                "fee_conservation_violated",
                token=token,
                owner=order.owner,
                gross_amount=gross_amount,
                wallet_fee=fee_to_wallet,
                miner_fee=fee_to_miner,
                burn=distribution.total_burn,
                redirected=distribution.total_redirected,
                rebate=distribution.rebate,
            )
            raise FeeConservationError(
                f"fee of {gross_amount} {token} paid by {order.owner} does not add up: "
                f"wallet={fee_to_wallet} miner={fee_to_miner} burn={distribution.total_burn} "
                f"redirected={distribution.total_redirected} rebate={distribution.rebate}",
                token, order.owner, gross_amount,
            )

        if fee_to_wallet > 0 and not order.wallet_addr:
            raise ValueError(f"order of {order.owner} pays a wallet fee but has no wallet")
        if fee_to_miner > 0 and not fee_recipient:
            raise ValueError("batch has no fee recipient for the miner's fee")

        fee_payments.extend(redirected)
        self._add_fee_payment(fee_payments, token, order.wallet_addr, fee_to_wallet)
        self._add_fee_payment(fee_payments, token, fee_recipient, fee_to_miner)
        self._add_fee_payment(
            fee_payments, token, self.config.fee_holder_address, distribution.total_burn
        )

        logger.debug(
            "fee_distributed",
            token=token,
            owner=order.owner,
            gross_amount=gross_amount,
            wallet_fee=fee_to_wallet,
            miner_fee=fee_to_miner,
            burn=distribution.total_burn,
            redirected=distribution.total_redirected,
            rebate=distribution.rebate,
        )
        return distribution

    @staticmethod
    def _add_fee_payment(
        fee_payments: list[FeePayment],
        token: str,
        owner: Optional[str],
        amount: int,
    ) -> None:
        if amount > 0:
            fee_payments.append(FeePayment(token=token, owner=owner, amount=amount))

    def calculate_order_settlement(
        self,
        ring_orders: list[Order],
        order: Order,
        expectation: OrderExpectation,
        prev_order: Order,
        prev_expectation: OrderExpectation,
        fee_recipient: Optional[str],
        fee_payments: list[FeePayment],
    ) -> OrderSettlement:
        """
        Settle one order of a ring.

        Fill amounts come from the expected fill fraction. The margin is
        what this order sells beyond what its predecessor in the ring buys,
        taken from the predecessor's expectation.

        Returns:
            OrderSettlement with fills, fees, rebates and margin
        """
        wallet_split_percentage = order.wallet_split_percentage if order.wallet_addr else 0
        if expectation.p2p:
            wallet_split_percentage = self.config.wallet_split_base

        amount_s = fill_amount(order.amount_s, expectation.filled_fraction)
        amount_b = fill_amount(order.amount_b, expectation.filled_fraction)
        prev_amount_b = fill_amount(prev_order.amount_b, prev_expectation.filled_fraction)
        base = self.config.fee_percentage_base

        if expectation.p2p:
            amount_fee_s = amount_s * order.token_s_fee_percentage // base
            amount_fee_b = amount_b * order.token_b_fee_percentage // base
            distribution_s = self.distribute(
                fee_payments, ring_orders, order, order.token_s,
                amount_fee_s, wallet_split_percentage, True, fee_recipient,
            )
            distribution_b = self.distribute(
                fee_payments, ring_orders, order, order.token_b,
                amount_fee_b, wallet_split_percentage, True, fee_recipient,
            )
            return OrderSettlement(
                amount_s=amount_s,
                amount_b=amount_b,
                amount_fee_s=amount_fee_s,
                amount_fee_b=amount_fee_b,
                rebate_s=distribution_s.rebate,
                rebate_b=distribution_b.rebate,
                split_s=amount_s - amount_fee_s - prev_amount_b,
            )

        amount_fee = fill_amount(order.fee_amount, expectation.filled_fraction)
        distribution = self.distribute(
            fee_payments, ring_orders, order, order.fee_token,
            amount_fee, wallet_split_percentage, False, fee_recipient,
        )
        return OrderSettlement(
            amount_s=amount_s,
            amount_b=amount_b,
            amount_fee=amount_fee,
            rebate_fee=distribution.rebate,
            split_s=amount_s - prev_amount_b,
        )

    def apply_settlement(
        self,
        balances: BalanceBook,
        order: Order,
        settlement: OrderSettlement,
        fee_recipient: Optional[str],
    ) -> None:
        """Fold one order's settlement into a principal balance book."""
        balances.add_balance(order.owner, order.token_s, -settlement.total_s, order.effective_tranche_s)
        balances.add_balance(order.recipient, order.token_b, settlement.total_b, order.effective_tranche_b)
        if settlement.total_fee != 0:
            balances.add_balance(order.owner, order.fee_token, -settlement.total_fee)

        # The margin stays with the fee recipient, except for security tokens
        if order.token_type_s != TokenType.ERC1400 and settlement.split_s != 0:
            if not fee_recipient:
                raise ValueError("batch has no fee recipient for the margin")
            balances.add_balance(fee_recipient, order.token_s, settlement.split_s)

    def _reserve(self, order: Order, settlement: OrderSettlement) -> None:
        self.order_validator.reserve(order, SpendableLeg.S, settlement.amount_s)
        if settlement.amount_fee > 0:
            self.order_validator.reserve(order, SpendableLeg.FEE, settlement.amount_fee)

    def verify(
        self,
        batch: RingBatch,
        report: SettlementReport,
        address_labels: Optional[Mapping[str, str]] = None,
    ) -> VerificationResult:
        """
        Verify a reported execution trace against the simulation.

        Args:
            batch: Rings, orders and expectations
            report: Reported revert status, balances and filled amounts
            address_labels: Names for addresses used in failure descriptions

        Returns:
            VerificationResult; the report is never modified

        Raises:
            FeeConservationError: If a fee distribution does not add up
            ReservationError: If an order is expected to fill beyond its balance
        """
        expected = batch.expected
        if expected is None:
            logger.info("settlement_verification_skipped", description=batch.description)
            return VerificationResult(passed=True, skipped=True)

        bind_batch_id(uuid.uuid4().hex[:12])
        reconciler = SettlementReconciler(self.config, address_labels)

        if report.reverted != expected.revert:
            discrepancy = Discrepancy(
                type=DiscrepancyType.REVERT_MISMATCH,
                description=(
                    "Transaction should revert when expected" if expected.revert
                    else f"Transaction reverted unexpectedly: {report.revert_message}"
                ),
                expected_value=expected.revert,
                actual_value=report.reverted,
            )
            logger.error("settlement_verification_failed", reason=discrepancy.description)
            return VerificationResult.failure([discrepancy])

        if report.reverted:
            if (
                expected.revert_message
                and report.revert_message
                and expected.revert_message != report.revert_message
            ):
                discrepancy = Discrepancy(
                    type=DiscrepancyType.REVERT_MISMATCH,
                    description=(
                        f"Revert message different than expected: "
                        f"expected={expected.revert_message!r}, actual={report.revert_message!r}"
                    ),
                    expected_value=expected.revert_message,
                    actual_value=report.revert_message,
                )
                logger.error("settlement_verification_failed", reason=discrepancy.description)
                return VerificationResult.failure([discrepancy])
            logger.info("settlement_verification_passed", reverted=True)
            return VerificationResult(passed=True)

        fee_recipient = batch.effective_fee_recipient
        expected_balances = report.balances_before.copy()
        expected_fee_balances = report.fee_balances_before.copy()

        for order in batch.orders:
            if order.hash is None:
                order.hash = self.hasher.hash_order(order)
            if self.order_validator:
                self.order_validator.reset_reservations(order)

        expected_filled_amounts = {
            order.hash_hex: report.filled_amounts_before.get(order.hash_hex, 0)
            for order in batch.orders
        }

        fee_payments: list[FeePayment] = []
        settlements: list[list[OrderSettlement]] = []
        discrepancies: list[Discrepancy] = []

        for r, ring in enumerate(batch.rings):
            ring_expectation = expected.rings[r]
            if ring_expectation.fail:
                settlements.append([])
                continue

            ring_orders = [batch.orders[index] for index in ring]
            ring_settlements = []
            for o, order in enumerate(ring_orders):
                order_expectation = ring_expectation.orders[o]
                prev = predecessor_position(o, len(ring))

                settlement = self.calculate_order_settlement(
                    ring_orders,
                    order,
                    order_expectation,
                    ring_orders[prev],
                    ring_expectation.orders[prev],
                    fee_recipient,
                    fee_payments,
                )
                ring_settlements.append(settlement)
                if self.order_validator:
                    self._reserve(order, settlement)

                if (
                    order_expectation.margin is not None
                    and not reconciler.almost_equal(settlement.split_s, order_expectation.margin)
                ):
                    discrepancies.append(Discrepancy(
                        type=DiscrepancyType.MARGIN_MISMATCH,
                        description=(
                            f"Margin does not match the expected value in ring {r}: "
                            f"expected={order_expectation.margin}, actual={settlement.split_s}"
                        ),
                        expected_value=order_expectation.margin,
                        actual_value=settlement.split_s,
                        owner=order.owner,
                        order_hash=order.hash_hex,
                    ))

                self.apply_settlement(expected_balances, order, settlement, fee_recipient)
                expected_filled_amounts[order.hash_hex] += fill_amount(
                    order.amount_s, order_expectation.filled_fraction
                )
            settlements.append(ring_settlements)

        for payment in fee_payments:
            expected_fee_balances.add_balance(payment.owner, payment.token, payment.amount)

        reconciliation = reconciler.reconcile(
            expected_balances,
            report.balances_after,
            expected_fee_balances,
            report.fee_balances_after,
            expected_filled_amounts,
            report.filled_amounts_after,
        )
        discrepancies.extend(reconciliation.discrepancies)

        if discrepancies:
            result = VerificationResult.failure(
                discrepancies,
                settlements=settlements,
                fee_payments=fee_payments,
            )
            logger.error(
                "settlement_verification_failed",
                reason=result.reason,
                location=result.location,
                discrepancy_count=len(discrepancies),
            )
            return result

        logger.info(
            "settlement_verification_passed",
            rings=len(batch.rings),
            orders=len(batch.orders),
            fee_payments=len(fee_payments),
        )
        return VerificationResult(
            passed=True,
            settlements=settlements,
            fee_payments=fee_payments,
        )
