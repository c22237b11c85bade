"""Brand / series / model / price-ceiling filtering for monitored links."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from stockwatch.catalog import Link

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ModelFilter:
    """One SHOW_ONLY_MODELS entry; an empty series matches any series."""

    name: str
    series: str = ""


@dataclass
class FilterConfig:
    """Allow-lists for links. An empty list means "no restriction"."""

    brands: List[str] = field(default_factory=list)
    series: List[str] = field(default_factory=list)
    models: List[ModelFilter] = field(default_factory=list)
    max_price_series: dict[str, float] = field(default_factory=dict)


def _normalize(value: str) -> str:
    return value.strip().lower()


def _normalize_model(value: str) -> str:
    return _WHITESPACE.sub("", value).lower()


class LinkFilter:
    """Evaluates the configured allow-lists against links and observed prices."""

    def __init__(self, config: FilterConfig):
        self.config = config
        self._brands = {_normalize(b) for b in config.brands if b}
        self._series = {_normalize(s) for s in config.series if s}
        self._models = [
            (_normalize_model(m.name), _normalize(m.series))
            for m in config.models
            if m.name
        ]
        self._ceilings = {
            _normalize(series): Decimal(str(ceiling))
            for series, ceiling in config.max_price_series.items()
        }

    def matches_brand(self, link: Link) -> bool:
        if not self._brands:
            return True
        return _normalize(link.brand) in self._brands

    def matches_series(self, link: Link) -> bool:
        if not self._series:
            return True
        return _normalize(link.series) in self._series

    def matches_model(self, link: Link) -> bool:
        if not self._models:
            return True
        model = _normalize_model(link.model)
        series = _normalize(link.series)
        return any(
            name == model and (not entry_series or entry_series == series)
            for name, entry_series in self._models
        )

    def price_ceiling(self, series: str) -> Decimal:
        """Configured ceiling for a series; 0 means no ceiling."""
        return self._ceilings.get(_normalize(series), Decimal("0"))

    def within_price_ceiling(self, link: Link, price: Optional[Decimal]) -> bool:
        """
        Check the observed price against the link's ceiling.

        A zero ceiling disables the check; an unknown price cannot be shown
        to exceed the ceiling and therefore passes.
        """
        ceiling = link.price_ceiling
        if not ceiling:
            return True
        if price is None:
            return True
        return price <= ceiling

    def passes_static(self, link: Link) -> bool:
        """Filters that depend only on the link, not on an observation."""
        return (
            self.matches_brand(link)
            and self.matches_series(link)
            and self.matches_model(link)
        )

    def passes(self, link: Link, price: Optional[Decimal]) -> bool:
        return self.passes_static(link) and self.within_price_ceiling(link, price)

    def filter_links(self, links: List[Link]) -> List[Link]:
        """Drop links that can never pass the static filters."""
        kept = [link for link in links if self.passes_static(link)]
        removed = len(links) - len(kept)
        if removed:
            logger.info(
                "Filtered %s of %s links by brand/series/model allow-lists.",
                removed,
                len(links),
            )
        return kept
