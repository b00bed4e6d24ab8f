"""Tests for MarginPolicy."""
import pytest

from bracketbot.config import Settings
from bracketbot.risk.margins import MarginPolicy

from conftest import make_position


class TestBracketPrices:
    """Tests for bracket price derivation."""

    @pytest.fixture
    def policy(self) -> MarginPolicy:
        return MarginPolicy(lower_margin=0.99, upper_margin=1.01, price_decimals=5)

    def test_bracket_around_reference(self, policy: MarginPolicy):
        """A 1,000,000 print brackets at 990,000 / 1,010,000."""
        buy, sell = policy.bracket_prices(1_000_000.0)

        assert buy == 990_000.0
        assert sell == 1_010_000.0

    @pytest.mark.parametrize("price", [0.5, 123.456, 4_321_987.25])
    def test_bracket_is_symmetric(self, policy: MarginPolicy, price: float):
        buy, sell = policy.bracket_prices(price)

        assert buy < price < sell
        assert buy == pytest.approx(price * 0.99, abs=1e-5)
        assert sell == pytest.approx(price * 1.01, abs=1e-5)

    def test_rounds_to_price_precision(self):
        policy = MarginPolicy(price_decimals=0)
        buy, sell = policy.bracket_prices(1234.0)

        assert buy == 1222.0  # 1221.66
        assert sell == 1246.0  # 1246.34

    def test_rejects_non_positive_price(self, policy: MarginPolicy):
        with pytest.raises(ValueError, match="must be > 0"):
            policy.bracket_prices(0.0)

    def test_from_settings(self):
        settings = Settings(lower_margin=0.98, upper_margin=1.03, price_decimals=2)
        policy = MarginPolicy.from_settings(settings)

        assert policy == MarginPolicy(lower_margin=0.98, upper_margin=1.03, price_decimals=2)


class TestTakeProfit:
    """Tests for take-profit targets on open positions."""

    def test_long_take_profit_above_open(self):
        policy = MarginPolicy()
        position = make_position(side="long", open_price=990_000.0)

        tp = policy.take_profit(position)

        assert tp == pytest.approx(1_000_000.0)
        assert tp > position.open_price

    def test_short_take_profit_below_open(self):
        policy = MarginPolicy()
        position = make_position(side="short", open_price=1_010_000.0)

        tp = policy.take_profit(position)

        assert tp == pytest.approx(1_000_000.0)
        assert tp < position.open_price

    def test_unknown_side_rejected(self):
        with pytest.raises(ValueError, match="Unknown position side"):
            MarginPolicy().take_profit(make_position(side="flat"))
