"""Tests for order validation and spendable accounting."""

import pytest

from packages.ledger import FakeBrokerInterceptor, FakeLedger
from packages.order_validator import (
    OrderValidator,
    ReservationError,
    SpendableInvariantError,
)
from packages.protocol_config import DEFAULT_TRANCHE, ZERO_ADDRESS, ProtocolConfig
from packages.schemas import Order, SpendableLeg, TokenType


E18 = 10**18
NOW = 1_700_000_000


def addr(n: int) -> str:
    return "0x" + f"{n:040x}"


OWNER = addr(0xA11CE)
BROKER = addr(0xB40CE4)
INTERCEPTOR = addr(0x1CE)
DUAL_AUTH = addr(0xD0A1)
WALLET = addr(0x3A11E7)
WETH = addr(0x200)
LRC = addr(0x100)
GTO = addr(0x300)
SECURITY = addr(0x1400)
TRANCHE = "0x" + "ab" * 32


@pytest.fixture
def config():
    """Default protocol configuration."""
    return ProtocolConfig()


@pytest.fixture
def ledger():
    """Empty in-memory ledger."""
    return FakeLedger()


@pytest.fixture
def validator(ledger, config):
    """Validator backed by the fake ledger."""
    return OrderValidator(
        token_ledger=ledger,
        security_token_ledger=ledger,
        broker_registry=ledger,
        broker_interceptor=FakeBrokerInterceptor(ledger),
        signature_verifier=ledger,
        order_registry=ledger,
        order_book=ledger,
        config=config,
    )


def make_order(**overrides) -> Order:
    fields = dict(
        owner=OWNER,
        token_s=WETH,
        token_b=LRC,
        amount_s=10 * E18,
        amount_b=1000 * E18,
        fee_token=GTO,
        fee_amount=E18,
        valid_since=NOW - 100,
    )
    fields.update(overrides)
    return Order(**fields)


class TestValidate:
    """Test static order checks."""

    def test_valid_order(self, validator):
        """Test a well-formed order passes every check."""
        order = make_order()

        result = validator.validate(order, NOW)

        assert result.valid is True
        assert result.reasons == []
        assert order.valid is True

    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"version": 1}, "unsupported order version"),
            ({"owner": None}, "invalid order owner"),
            ({"token_s": None}, "invalid order tokenS"),
            ({"token_b": ""}, "invalid order tokenB"),
            ({"amount_s": 0}, "invalid order amountS"),
            ({"amount_b": 0}, "invalid order amountB"),
            ({"fee_token": None}, "invalid feeToken"),
            ({"token_type_fee": TokenType.ERC1400}, "feeToken cannot be a security token"),
            ({"waive_fee_percentage": 1000}, "invalid waive percentage"),
            ({"waive_fee_percentage": -1001}, "invalid waive percentage"),
            ({"token_s_fee_percentage": 1000}, "invalid tokenS percentage"),
            ({"token_b_fee_percentage": 1500}, "invalid tokenB percentage"),
            ({"wallet_split_percentage": 101}, "invalid wallet split percentage"),
            ({"dual_auth_addr": DUAL_AUTH}, "missing dual author signature"),
            ({"tranche_s": TRANCHE}, "invalid trancheS"),
            ({"tranche_b": TRANCHE}, "invalid trancheB"),
            ({"transfer_data_s": "0x1234"}, "invalid transferDataS"),
            ({"valid_since": NOW + 1}, "order is too early to match"),
            ({"valid_until": NOW}, "order is expired"),
        ],
    )
    def test_invalid_field(self, validator, overrides, reason):
        """Test each check records its own reason."""
        order = make_order(**overrides)

        result = validator.validate(order, NOW)

        assert result.valid is False
        assert reason in result.reasons
        assert order.valid is False

    def test_waive_percentage_bounds(self, validator):
        """Test the waiver may go down to minus the base."""
        assert validator.validate(make_order(waive_fee_percentage=-1000), NOW).valid
        assert validator.validate(make_order(waive_fee_percentage=999), NOW).valid

    @pytest.mark.parametrize("waive", [-0x10000, 0x10000])
    def test_waive_percentage_out_of_field_range(self, waive):
        """Test the waiver is bounded like the other percentages."""
        with pytest.raises(ValueError):
            make_order(waive_fee_percentage=waive)

    def test_security_token_fee_percentage(self, validator):
        """Test a security token leg cannot carry a percentage fee."""
        order = make_order(token_type_s=TokenType.ERC1400, token_s_fee_percentage=10)

        result = validator.validate(order, NOW)

        assert "tokenS fee percentage on a security token" in result.reasons

    def test_security_token_leg_allows_tranche(self, validator):
        """Test tranche and transfer data are accepted on a security token leg."""
        order = make_order(
            token_type_s=TokenType.ERC1400,
            tranche_s=TRANCHE,
            transfer_data_s="0xdeadbeef",
            token_type_b=TokenType.ERC1400,
            tranche_b=TRANCHE,
        )

        assert validator.validate(order, NOW).valid is True

    def test_default_tranche_explicit(self, validator):
        """Test an explicit default tranche is accepted on a fungible leg."""
        order = make_order(tranche_s=DEFAULT_TRANCHE, transfer_data_s="0x")

        assert validator.validate(order, NOW).valid is True

    def test_open_ended_validity(self, validator):
        """Test an order without validUntil never expires."""
        order = make_order(valid_until=None)

        assert validator.validate(order, NOW + 10**9).valid is True

    def test_all_violations_reported(self, validator):
        """Test evaluation continues after the first failure."""
        order = make_order(version=3, amount_s=0, valid_until=NOW - 1)

        result = validator.validate(order, NOW)

        assert "unsupported order version" in result.reasons
        assert "invalid order amountS" in result.reasons
        assert "order is expired" in result.reasons

    def test_invalid_order_stays_invalid(self, validator):
        """Test a later passing check does not make the order valid again."""
        order = make_order(amount_s=0)
        validator.validate(order, NOW)

        validator.check_all_or_none(order)

        assert order.valid is False
        assert order.validation.reasons == ["invalid order amountS"]

    def test_custom_fee_percentage_base(self, validator):
        """Test percentages are checked against the supplied base."""
        order = make_order(token_s_fee_percentage=150)

        assert validator.validate(order, NOW, fee_percentage_base=100).valid is False
        assert validator.validate(make_order(token_s_fee_percentage=150), NOW).valid is True


class TestBroker:
    """Test broker resolution."""

    def test_self_brokered(self, validator):
        """Test an order without broker is brokered by its owner."""
        order = make_order()

        result = validator.resolve_broker(order)

        assert result.valid is True
        assert order.broker == OWNER

    def test_hash_stable_across_broker_resolution(self, validator, ledger):
        """Test a self-brokered order hashes the same before and after resolution."""
        order = make_order()
        signed_hash = validator.hasher.hash_order(order)
        order.sig = ledger.sign(OWNER, signed_hash)

        validator.resolve_broker(order)

        assert validator.hasher.hash_order(order) == signed_hash
        assert validator.check_broker_signature(order).valid is True
        assert order.hash == signed_hash

    def test_unregistered_broker(self, validator):
        """Test an unregistered broker invalidates the order."""
        order = make_order(broker=BROKER)

        result = validator.resolve_broker(order)

        assert result.valid is False
        assert "order broker is not registered" in order.validation.reasons

    def test_registered_broker_with_interceptor(self, validator, ledger, config):
        """Test a registered interceptor does not cap the owner's spendable."""
        ledger.register_broker(OWNER, BROKER, INTERCEPTOR)
        ledger.set_balance(WETH, OWNER, 100)
        ledger.set_allowance(WETH, OWNER, config.trade_delegate_address, 100)
        order = make_order(broker=BROKER)

        result = validator.resolve_broker(order)

        assert result.valid is True
        assert order.broker == BROKER
        assert order.broker_interceptor is None
        assert validator.get_spendable_s(order) == 100

    def test_registered_broker_without_interceptor(self, validator, ledger):
        """Test a zero interceptor address leaves the order without interceptor."""
        ledger.register_broker(OWNER, BROKER)
        order = make_order(broker=BROKER)

        validator.resolve_broker(order)

        assert order.broker_interceptor is None


class TestAllOrNone:
    """Test all-or-none checks."""

    def test_completely_filled(self, validator):
        order = make_order(all_or_none=True, filled_amount_s=10 * E18)
        assert validator.check_all_or_none(order).valid is True

    def test_partially_filled(self, validator):
        order = make_order(all_or_none=True, filled_amount_s=5 * E18)

        result = validator.check_all_or_none(order)

        assert result.valid is False
        assert "allOrNone not completely filled" in result.reasons

    def test_partial_fill_allowed(self, validator):
        order = make_order(filled_amount_s=5 * E18)
        assert validator.check_all_or_none(order).valid is True


class TestSignatures:
    """Test broker and dual-auth signature checks."""

    def test_signed_by_owner(self, validator, ledger):
        """Test a self-brokered order signed by its owner."""
        order = make_order()
        validator.resolve_broker(order)
        order.sig = ledger.sign(OWNER, validator.compute_hash(order))

        assert validator.check_broker_signature(order).valid is True

    def test_signed_by_wrong_key(self, validator, ledger):
        """Test a signature by someone other than the broker is rejected."""
        order = make_order()
        validator.resolve_broker(order)
        order.sig = ledger.sign(BROKER, validator.compute_hash(order))

        result = validator.check_broker_signature(order)

        assert result.valid is False
        assert "invalid order signature" in result.reasons

    def test_signed_by_registered_broker(self, validator, ledger):
        """Test the broker, not the owner, must sign a brokered order."""
        ledger.register_broker(OWNER, BROKER)
        order = make_order(broker=BROKER)
        order_hash = validator.compute_hash(order)
        validator.resolve_broker(order)
        order.sig = ledger.sign(BROKER, order_hash)

        assert validator.check_broker_signature(order).valid is True

    def test_partially_filled_skips_signature(self, validator, ledger):
        """Test a partially filled order is not re-checked."""
        order = make_order(filled_amount_s=1, sig=ledger.sign(BROKER, b"\x00" * 32))

        assert validator.check_broker_signature(order).valid is True

    def test_unsigned_registered_hash(self, validator, ledger):
        """Test an unsigned order pre-approved in the order registry."""
        order = make_order()
        validator.compute_hash(order)
        validator.resolve_broker(order)
        ledger.register_order_hash(OWNER, order.hash_hex)

        assert validator.check_broker_signature(order).valid is True

    def test_unsigned_order_book_submission(self, validator, ledger):
        """Test an unsigned order submitted to the order book."""
        order = make_order()
        validator.compute_hash(order)
        ledger.submit_order_hash(order.hash_hex)

        assert validator.check_broker_signature(order).valid is True

    def test_unsigned_unregistered(self, validator):
        """Test an unsigned order without on-chain registration is invalid."""
        order = make_order()

        result = validator.check_broker_signature(order)

        assert result.valid is False
        assert order.hash is not None

    def test_dual_auth_signature(self, validator, ledger):
        """Test the dual-auth signature covers the mining hash."""
        mining_hash = bytes(range(32))
        order = make_order(dual_auth_addr=DUAL_AUTH)
        order.dual_auth_sig = ledger.sign(DUAL_AUTH, mining_hash)

        assert validator.check_dual_auth_signature(order, mining_hash).valid is True

    def test_dual_auth_signature_over_order_hash(self, validator, ledger):
        """Test a dual-auth signature over the order hash is rejected."""
        order = make_order(dual_auth_addr=DUAL_AUTH)
        order.dual_auth_sig = ledger.sign(DUAL_AUTH, validator.compute_hash(order))

        result = validator.check_dual_auth_signature(order, bytes(range(32)))

        assert "invalid order dual auth signature" in result.reasons

    def test_no_dual_auth(self, validator):
        """Test the dual-auth check is skipped without a signature."""
        order = make_order()
        assert validator.check_dual_auth_signature(order, bytes(32)).valid is True


class TestPrepareOrder:
    """Test the full preparation pipeline."""

    def test_prepare_valid_order(self, validator, ledger):
        order = make_order(token_s_fee_percentage=5)
        order_hash = validator.hasher.hash_order(order)
        order.sig = ledger.sign(OWNER, order_hash)

        result = validator.prepare_order(order, NOW)

        assert result.valid is True
        assert order.hash == order_hash
        assert order.p2p is True
        assert order.broker == OWNER

    def test_prepare_orders_filters_invalid(self, validator, ledger):
        good = make_order()
        good.sig = ledger.sign(OWNER, validator.hasher.hash_order(good))
        bad = make_order(amount_b=0)

        valid_orders = validator.prepare_orders([good, bad], NOW)

        assert valid_orders == [good]
        assert bad.valid is False

    def test_check_p2p(self, validator):
        assert validator.check_p2p(make_order()) is False
        assert validator.check_p2p(make_order(token_b_fee_percentage=1)) is True


class TestSpendable:
    """Test spendable balances and reservations."""

    @pytest.fixture
    def funded(self, ledger, config):
        """Owner with 10 WETH balance and 8 WETH allowance."""
        ledger.set_balance(WETH, OWNER, 10 * E18)
        ledger.set_allowance(WETH, OWNER, config.trade_delegate_address, 8 * E18)
        ledger.set_balance(GTO, OWNER, 3 * E18)
        ledger.set_allowance(GTO, OWNER, config.trade_delegate_address, 5 * E18)
        return ledger

    def test_spendable_is_min_of_balance_and_allowance(self, validator, funded):
        order = make_order()
        assert validator.get_spendable_s(order) == 8 * E18
        assert validator.get_spendable_fee(order) == 3 * E18

    def test_spendable_is_cached(self, validator, funded):
        """Test the ledger is queried only on first use."""
        order = make_order()
        validator.get_spendable_s(order)
        queries = funded.query_count

        funded.set_balance(WETH, OWNER, 0)
        assert validator.get_spendable_s(order) == 8 * E18
        assert funded.query_count == queries

    def test_reservations_accumulate(self, validator, funded):
        order = make_order()

        validator.reserve(order, SpendableLeg.S, 3 * E18)
        validator.reserve_amount_s(order, 2 * E18)

        assert order.token_spendable_s.reserved == 5 * E18
        assert validator.get_spendable_s(order) == 3 * E18

    def test_over_reservation_fails_without_mutation(self, validator, funded):
        order = make_order()
        validator.reserve_amount_fee(order, E18)

        with pytest.raises(ReservationError):
            validator.reserve_amount_fee(order, 2 * E18 + 1)

        assert order.token_spendable_fee.reserved == E18
        assert validator.get_spendable_fee(order) == 2 * E18

    def test_reserve_exactly_spendable(self, validator, funded):
        order = make_order()
        validator.reserve_amount_s(order, 8 * E18)
        assert validator.get_spendable_s(order) == 0

    def test_reset_reservations_idempotent(self, validator, funded):
        order = make_order()
        validator.reserve_amount_s(order, 4 * E18)
        validator.reserve_amount_fee(order, E18)

        validator.reset_reservations(order)
        validator.reset_reservations(order)

        assert validator.get_spendable_s(order) == 8 * E18
        assert validator.get_spendable_fee(order) == 3 * E18

    def test_negative_spendable_is_invariant_error(self, validator, funded):
        order = make_order()
        validator.get_spendable_s(order)
        order.token_spendable_s.reserved = 9 * E18

        with pytest.raises(SpendableInvariantError):
            validator.get_spendable_s(order)

    def test_broker_allowance_caps_spendable(self, validator, funded):
        funded.set_broker_allowance(INTERCEPTOR, OWNER, BROKER, WETH, 2 * E18)
        order = make_order(broker=BROKER, broker_interceptor=INTERCEPTOR)

        assert validator.get_spendable_s(order) == 2 * E18

        validator.reserve_amount_s(order, E18)
        assert order.broker_spendable_s.reserved == E18
        assert validator.get_spendable_s(order) == E18

    def test_broker_allowance_fails_closed(self, validator, funded):
        """Test a failing interceptor query yields zero allowance."""
        funded.fail_interceptor(INTERCEPTOR)
        order = make_order(broker=BROKER, broker_interceptor=INTERCEPTOR)

        assert validator.get_spendable_s(order) == 0

    def test_security_token_operator(self, validator, ledger, config):
        ledger.add_operator(SECURITY, config.trade_delegate_address, OWNER)
        ledger.set_tranche_balance(SECURITY, TRANCHE, OWNER, 7)
        order = make_order(token_s=SECURITY, token_type_s=TokenType.ERC1400, tranche_s=TRANCHE)

        assert validator.get_spendable_s(order) == 7

    def test_security_token_tranche_operator(self, validator, ledger, config):
        ledger.add_tranche_operator(SECURITY, TRANCHE, config.trade_delegate_address, OWNER)
        ledger.set_tranche_balance(SECURITY, TRANCHE, OWNER, 11)
        order = make_order(token_s=SECURITY, token_type_s=TokenType.ERC1400, tranche_s=TRANCHE)

        assert validator.get_spendable_s(order) == 11

    def test_security_token_without_operator(self, validator, ledger):
        ledger.set_tranche_balance(SECURITY, TRANCHE, OWNER, 11)
        order = make_order(token_s=SECURITY, token_type_s=TokenType.ERC1400, tranche_s=TRANCHE)

        assert validator.get_spendable_s(order) == 0

    def test_negative_reservation_rejected(self, validator, funded):
        with pytest.raises(ValueError):
            validator.reserve_amount_s(make_order(), -1)


def test_zero_address_constant():
    """Test placeholder addresses are well-formed."""
    assert len(ZERO_ADDRESS) == 42
    assert len(addr(1)) == 42
