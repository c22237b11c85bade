"""Link catalog: every (target, product link) pair monitored during a run.

The catalog is built once at startup (and again on configuration reload)
and handed to the scheduler explicitly.
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from pydantic import BaseModel, ValidationError

from stockwatch.config import ConfigurationError, MonitorConfig, TargetConfig
from stockwatch.ingest.filters import LinkFilter

logger = logging.getLogger(__name__)


class LinkEntry(BaseModel):
    """Catalog file model for one product link."""
    brand: str
    series: str
    model: str
    url: str


class TargetEntry(BaseModel):
    """Catalog file model for one target."""
    name: str
    adapter: str = "static_html"
    options: dict[str, Any] = {}
    overrides: dict[str, Any] = {}
    links: list[LinkEntry] = []


class CatalogFile(BaseModel):
    """Top-level catalog file model."""
    targets: list[TargetEntry]


@dataclass(frozen=True)
class Link:
    """One monitorable product URL."""

    target: str
    brand: str
    series: str
    model: str
    url: str
    price_ceiling: Decimal = Decimal("0")

    @property
    def key(self) -> tuple[str, str]:
        return (self.target, self.url)

    @property
    def label(self) -> str:
        return f"{self.brand} {self.model} ({self.series})"


@dataclass
class Target:
    """A retail site with its own timing and proxy policy."""

    config: TargetConfig
    adapter: str = "static_html"
    options: dict[str, Any] = field(default_factory=dict)
    links: list[Link] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.config.name


class Catalog:
    """Immutable-per-run set of targets and their links."""

    def __init__(self, targets: list[Target]):
        self._targets = {t.name: t for t in targets}
        self._links = {link.key: link for t in targets for link in t.links}

    @property
    def targets(self) -> list[Target]:
        return list(self._targets.values())

    def get_target(self, name: str) -> Target:
        try:
            return self._targets[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown target: {name}. Available: {list(self._targets)}"
            ) from None

    def links(self) -> Iterator[Link]:
        for target in self._targets.values():
            yield from target.links

    def find_link(self, key: tuple[str, str]) -> Optional[Link]:
        return self._links.get(key)

    def __len__(self) -> int:
        return len(self._links)

    @classmethod
    def from_entries(
        cls,
        entries: list[TargetEntry],
        monitor_config: MonitorConfig,
        link_filter: LinkFilter,
        proxy_loader: Optional[Callable[[str], list[str]]] = None,
    ) -> "Catalog":
        """
        Build a catalog from parsed target entries.

        When STORES is configured only those targets are kept, and every
        STORES name must exist in the catalog.

        Raises:
            ConfigurationError: On unknown STORES names or duplicate links
        """
        by_name: dict[str, TargetEntry] = {}
        for entry in entries:
            name = entry.name.strip().lower()
            if name in by_name:
                raise ConfigurationError(f"Duplicate target in catalog: {name}")
            by_name[name] = entry

        if monitor_config.stores:
            unknown = [s for s in monitor_config.stores if s not in by_name]
            if unknown:
                raise ConfigurationError(
                    f"Unknown target name(s) in STORES: {', '.join(unknown)}"
                )
            selected = list(monitor_config.stores)
        else:
            selected = list(by_name)

        targets = []
        for name in selected:
            entry = by_name[name]
            proxies = proxy_loader(name) if proxy_loader else []
            config = monitor_config.target_config(name, proxies=proxies, overrides=entry.overrides)

            links: list[Link] = []
            seen: set[str] = set()
            for link_entry in entry.links:
                if link_entry.url in seen:
                    raise ConfigurationError(f"{name}: duplicate link {link_entry.url}")
                seen.add(link_entry.url)
                links.append(
                    Link(
                        target=name,
                        brand=link_entry.brand,
                        series=link_entry.series,
                        model=link_entry.model,
                        url=link_entry.url,
                        price_ceiling=link_filter.price_ceiling(link_entry.series),
                    )
                )

            targets.append(
                Target(config=config, adapter=entry.adapter, options=dict(entry.options), links=links)
            )
            logger.info(
                "Loaded target %s: %d links, %d proxies, delay %.1f-%.1fs",
                name, len(links), len(config.proxies), config.min_delay, config.max_delay,
            )

        return cls(targets)

    @classmethod
    def load(
        cls,
        path: str | Path,
        monitor_config: MonitorConfig,
        link_filter: LinkFilter,
        proxy_loader: Optional[Callable[[str], list[str]]] = None,
    ) -> "Catalog":
        """Load and validate the JSON catalog file."""
        path = Path(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ConfigurationError(f"Catalog file not found: {path}") from None
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Catalog file {path} is not valid JSON: {e}") from None

        try:
            parsed = CatalogFile.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid catalog file {path}: {e}") from None

        return cls.from_entries(parsed.targets, monitor_config, link_filter, proxy_loader)
