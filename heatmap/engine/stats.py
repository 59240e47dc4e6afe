"""Aggregate market statistics and the filtered view they are computed over."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Sequence

import numpy as np

from heatmap.market.catalog import Instrument
from heatmap.state import Thresholds, TileState


class ViewCategory(Enum):
    ALL = "all"
    GAINING = "gaining"
    LOSING = "losing"
    NEUTRAL = "neutral"


class SortKey(Enum):
    DEFAULT = "default"
    CHANGE_DESC = "change_desc"
    CHANGE_ASC = "change_asc"
    TICKER = "ticker"
    PRICE = "price"


@dataclass(frozen=True)
class AggregateStats:
    gaining: int
    losing: int
    mean_change: float
    temperature: float
    volatility: float
    visible_count: int

    def to_dict(self) -> dict:
        return {
            "gaining": self.gaining,
            "losing": self.losing,
            "mean_change": round(self.mean_change, 4),
            "temperature": round(self.temperature, 2),
            "volatility": round(self.volatility, 2),
            "visible_count": self.visible_count,
        }


EMPTY_STATS = AggregateStats(0, 0, 0.0, 0.0, 0.0, 0)


def compute_stats(tiles: Sequence[TileState], thresholds: Thresholds = Thresholds()) -> AggregateStats:
    """Gaining/losing counts, mean change, temperature and volatility over ``tiles``."""
    if not tiles:
        return EMPTY_STATS
    changes = np.fromiter((t.change_pct for t in tiles), dtype=float, count=len(tiles))
    gaining = int(np.count_nonzero(changes > thresholds.mild_gain))
    losing = int(np.count_nonzero(changes < thresholds.mild_loss))
    count = len(tiles)
    mean_change = float(changes.sum() / count)
    return AggregateStats(
        gaining=gaining,
        losing=losing,
        mean_change=mean_change,
        temperature=(gaining - losing) / count * 50,
        volatility=abs(mean_change) * 10,
        visible_count=count,
    )


@dataclass(frozen=True)
class ViewFilter:
    """What the consumer currently shows: category, free-text search and ordering."""
    category: ViewCategory = ViewCategory.ALL
    search: str = ""
    sort: SortKey = SortKey.DEFAULT

    @property
    def is_filtered(self) -> bool:
        return self.category is not ViewCategory.ALL or bool(self.search.strip())

    def matches(self, instrument: Instrument, tile: TileState, thresholds: Thresholds) -> bool:
        term = self.search.strip().lower()
        if term and not (
            term in instrument.ticker.lower()
            or term in instrument.name.lower()
            or term in instrument.sector.lower()
        ):
            return False
        if self.category is ViewCategory.GAINING:
            return tile.change_pct > thresholds.mild_gain
        if self.category is ViewCategory.LOSING:
            return tile.change_pct < thresholds.mild_loss
        if self.category is ViewCategory.NEUTRAL:
            return thresholds.mild_loss <= tile.change_pct <= thresholds.mild_gain
        return True

    def apply(
        self,
        pairs: Iterable[tuple],
        thresholds: Thresholds = Thresholds(),
    ) -> List[tuple]:
        """Filter and order ``(instrument, tile)`` pairs given in catalog order."""
        visible = [(inst, tile) for inst, tile in pairs if self.matches(inst, tile, thresholds)]
        if self.sort is SortKey.CHANGE_DESC:
            visible.sort(key=lambda p: p[1].change_pct, reverse=True)
        elif self.sort is SortKey.CHANGE_ASC:
            visible.sort(key=lambda p: p[1].change_pct)
        elif self.sort is SortKey.TICKER:
            visible.sort(key=lambda p: p[0].ticker)
        elif self.sort is SortKey.PRICE:
            visible.sort(key=lambda p: p[1].price, reverse=True)
        return visible
