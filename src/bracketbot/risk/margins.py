from __future__ import annotations

from dataclasses import dataclass

from bracketbot.config import Settings
from bracketbot.exchange.models import Position


@dataclass(frozen=True)
class MarginPolicy:
    lower_margin: float = 0.99
    upper_margin: float = 1.01
    price_decimals: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "MarginPolicy":
        return cls(
            lower_margin=settings.lower_margin,
            upper_margin=settings.upper_margin,
            price_decimals=settings.price_decimals,
        )

    def _round(self, price: float) -> float:
        return round(price, self.price_decimals)

    def bracket_prices(self, reference_price: float) -> tuple[float, float]:
        # (buy, sell) around the last traded price
        if reference_price <= 0:
            raise ValueError(f"reference price must be > 0, got {reference_price}")
        buy = self._round(reference_price * self.lower_margin)
        sell = self._round(reference_price * self.upper_margin)
        return (buy, sell)

    def take_profit(self, position: Position) -> float:
        """Exit target mirroring the bracket ratios.

        Long: open / lower_margin (above entry). Short: open / upper_margin
        (below entry).
        """
        if position.is_long:
            return self._round(position.open_price / self.lower_margin)
        if position.is_short:
            return self._round(position.open_price / self.upper_margin)
        raise ValueError(f"Unknown position side: {position.side!r}")
