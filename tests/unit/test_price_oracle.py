"""
test_price_oracle.py - Unit tests for collateral price sources

Tests:
- StaticPriceOracle
- SlotSeriesPriceOracle: lookup at or before a slot, history gaps
- ConfidentialPriceOracle
- PriceOracle protocol conformance
- LendingProtocol oracle wiring
"""

import pytest

from confidential_lending import (
    ConfidentialPriceOracle, PriceOracle, PriceUnavailable,
    SlotSeriesPriceOracle, StaticPriceOracle,
    ConfigurationError, PoolNotFound,
)

from tests.conftest import build_market


class TestStaticPriceOracle:

    def test_price_ignores_slot(self):
        oracle = StaticPriceOracle(2)
        assert oracle.price(0) == 2
        assert oracle.price(10**9) == 2

    def test_update(self):
        oracle = StaticPriceOracle(2)
        oracle.update_price(1)
        assert oracle.price(0) == 1

    def test_zero_allowed(self):
        assert StaticPriceOracle(0).price(0) == 0

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            StaticPriceOracle(-1)

    @pytest.mark.parametrize("price", [1.5, "2", True])
    def test_non_integer_rejected(self, price):
        with pytest.raises(TypeError):
            StaticPriceOracle(price)


class TestSlotSeriesPriceOracle:

    def test_lookup_at_or_before(self):
        oracle = SlotSeriesPriceOracle([(0, 2), (1_000, 3)])
        assert oracle.price(0) == 2
        assert oracle.price(999) == 2
        assert oracle.price(1_000) == 3
        assert oracle.price(5_000) == 3

    def test_unsorted_observations(self):
        oracle = SlotSeriesPriceOracle([(1_000, 3), (0, 2)])
        assert oracle.price(500) == 2

    def test_before_first_observation(self):
        oracle = SlotSeriesPriceOracle([(100, 2)])
        with pytest.raises(PriceUnavailable):
            oracle.price(99)

    def test_empty(self):
        with pytest.raises(PriceUnavailable):
            SlotSeriesPriceOracle().price(0)

    def test_add_price(self):
        oracle = SlotSeriesPriceOracle([(0, 2)])
        oracle.add_price(50, 1)
        assert oracle.price(49) == 2
        assert oracle.price(50) == 1

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            SlotSeriesPriceOracle([(0, -2)])


class TestConfidentialPriceOracle:

    def test_returns_handle(self, enclave):
        price = enclave.encrypt(2)
        assert ConfidentialPriceOracle(price).price(0) is price

    def test_requires_handle(self):
        with pytest.raises(TypeError):
            ConfidentialPriceOracle(2)

    def test_update(self, enclave):
        oracle = ConfidentialPriceOracle(enclave.encrypt(2))
        new_price = enclave.encrypt(3)
        oracle.update_price(new_price)
        assert oracle.price(0) is new_price

    def test_repr_hides_price(self, enclave):
        price = enclave.encrypt(123456)
        assert "123456" not in repr(ConfidentialPriceOracle(price))


class TestProtocolConformance:

    @pytest.mark.parametrize("oracle", [
        StaticPriceOracle(1),
        SlotSeriesPriceOracle([(0, 1)]),
    ])
    def test_plain_oracles(self, oracle):
        assert isinstance(oracle, PriceOracle)

    def test_confidential_oracle(self, enclave):
        assert isinstance(ConfidentialPriceOracle(enclave.encrypt(1)), PriceOracle)


class TestProtocolWiring:

    def test_slot_series_drives_borrow(self):
        market = build_market()
        market.protocol.set_oracle(market.pool_id, SlotSeriesPriceOracle([(0, 1), (100, 2)]))
        market.open_loan(50)
        market.borrow()
        # price 1 at slot 0: 50 * 1 * 0.5 = 25
        assert market.reveal(market.borrower_usdc) == 25
        assert market.reveal(market.borrower_sol) == 0

    def test_price_unavailable_propagates(self):
        market = build_market()
        market.protocol.set_oracle(market.pool_id, SlotSeriesPriceOracle([(100, 2)]))
        market.open_loan(50)
        with pytest.raises(PriceUnavailable):
            market.borrow()

    def test_missing_oracle(self):
        market = build_market()
        market.protocol.oracles.clear()
        with pytest.raises(ConfigurationError):
            market.protocol.health_factor_below_one(market.pool_id, "alice")

    def test_set_oracle_unknown_pool(self):
        market = build_market()
        with pytest.raises(PoolNotFound):
            market.protocol.set_oracle("pool:nobody:USDC:SOL", StaticPriceOracle(1))
