"""Assembly of the monitor from settings, and configuration reload."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from stockwatch.catalog import Catalog
from stockwatch.config import MonitorConfig, Settings, build_monitor_config
from stockwatch.detect.state_tracker import StateTracker
from stockwatch.ingest.base import BaseAdapter
from stockwatch.ingest.filters import LinkFilter
from stockwatch.ingest.proxy_manager import ProxyPool, load_proxy_list
from stockwatch.ingest.rate_controller import RateController, build_captcha_policy
from stockwatch.ingest.registry import AdapterRegistry
from stockwatch.ingest.stock_checker import StockChecker
from stockwatch.notify.base import NotificationChannel
from stockwatch.notify.channels import build_channels
from stockwatch.notify.dispatcher import NotificationDispatcher
from stockwatch.worker.scheduler import MonitorScheduler

logger = logging.getLogger(__name__)


def build_adapters(
    catalog: Catalog,
    registry: AdapterRegistry,
    reuse: Optional[dict[str, tuple[tuple, BaseAdapter]]] = None,
) -> dict[str, tuple[tuple, BaseAdapter]]:
    """
    Create one adapter per target.

    Returns:
        target name -> (adapter signature, adapter); adapters whose signature
        is unchanged in ``reuse`` are kept
    """
    adapters = {}
    for target in catalog.targets:
        signature = (target.adapter, repr(sorted(target.options.items())))
        previous = (reuse or {}).get(target.name)
        if previous and previous[0] == signature:
            adapters[target.name] = previous
        else:
            adapters[target.name] = (signature, registry.create(target.adapter, target.options))
    return adapters


def build_proxy_pools(
    catalog: Catalog, config: MonitorConfig, clock: Callable[[], float] = time.monotonic
) -> dict[str, ProxyPool]:
    pools = {}
    for target in catalog.targets:
        if target.config.proxies:
            pools[target.name] = ProxyPool.from_entries(
                target.name,
                list(target.config.proxies),
                max_consecutive_blocks=config.proxy_max_consecutive_blocks,
                cooldown_seconds=config.proxy_cooldown_seconds,
                clock=clock,
            )
    return pools


@dataclass
class MonitorRuntime:
    """Everything the running monitor is made of."""

    settings: Settings
    config: MonitorConfig
    registry: AdapterRegistry
    scheduler: MonitorScheduler
    dispatcher: NotificationDispatcher
    checker: StockChecker
    adapters: dict[str, tuple[tuple, BaseAdapter]] = field(default_factory=dict)
    clock: Callable[[], float] = time.monotonic

    @property
    def catalog(self) -> Catalog:
        return self.scheduler.catalog

    async def reload(self, settings: Optional[Settings] = None) -> dict:
        """
        Re-read settings and the catalog file and apply them.

        Channels and alerting policy are fixed for the process lifetime;
        targets, links, timing, filters and proxies are reloaded.

        Raises:
            ConfigurationError: If the new configuration is invalid (the
                running configuration is left untouched)
        """
        settings = settings or Settings()
        config = build_monitor_config(settings)
        link_filter = LinkFilter(config.filters)
        catalog = Catalog.load(
            settings.catalog_path,
            config,
            link_filter,
            proxy_loader=lambda name: load_proxy_list(settings.proxy_dir, name),
        )
        adapters = build_adapters(catalog, self.registry, reuse=self.adapters)

        retired = [
            adapter for name, (_, adapter) in self.adapters.items()
            if adapters.get(name, (None, None))[1] is not adapter
        ]

        self.checker.set_adapters({name: adapter for name, (_, adapter) in adapters.items()})
        self.checker.link_filter = link_filter
        self.scheduler.link_filter = link_filter
        await self.scheduler.apply_catalog(catalog, proxy_pools=build_proxy_pools(catalog, config, self.clock))

        for adapter in retired:
            await adapter.close()

        self.settings = settings
        self.config = config
        self.adapters = adapters
        return {"targets": len(catalog.targets), "links": len(catalog)}

    async def close(self) -> None:
        await self.scheduler.stop()
        for _, adapter in self.adapters.values():
            try:
                await adapter.close()
            except Exception as e:
                logger.error(f"Error closing adapter: {e}")
        await self.dispatcher.close()


def build_runtime(
    settings: Settings,
    registry: Optional[AdapterRegistry] = None,
    channels: Optional[list[NotificationChannel]] = None,
    clock: Callable[[], float] = time.monotonic,
) -> MonitorRuntime:
    """
    Build the monitor from settings.

    Raises:
        ConfigurationError: On any invalid configuration
    """
    config = build_monitor_config(settings)
    link_filter = LinkFilter(config.filters)
    catalog = Catalog.load(
        settings.catalog_path,
        config,
        link_filter,
        proxy_loader=lambda name: load_proxy_list(settings.proxy_dir, name),
    )

    registry = registry or AdapterRegistry.default()
    adapters = build_adapters(catalog, registry)

    checker = StockChecker(
        {name: adapter for name, (_, adapter) in adapters.items()},
        link_filter,
        clock=clock,
        default_timeout=config.defaults.timeout,
    )
    dispatcher = NotificationDispatcher(
        build_channels(settings) if channels is None else channels,
        operator_channels=config.operator_channels,
        channel_timeout=config.channel_timeout,
    )
    scheduler = MonitorScheduler(
        catalog=catalog,
        rate_controller=RateController(
            captcha_policy=build_captcha_policy(config.captcha_disable_after), clock=clock
        ),
        checker=checker,
        tracker=StateTracker(
            renotify_interval=config.renotify_interval,
            renotify_on_price_drop=config.renotify_on_price_drop,
            log_restock_ended=config.log_restock_ended,
        ),
        dispatcher=dispatcher,
        link_filter=link_filter,
        proxy_pools=build_proxy_pools(catalog, config, clock),
        blocked_alert_streak=config.blocked_alert_streak,
        captcha_alerts=config.captcha_alerts,
        clock=clock,
        sleep=asyncio.sleep,
    )
    return MonitorRuntime(
        settings=settings,
        config=config,
        registry=registry,
        scheduler=scheduler,
        dispatcher=dispatcher,
        checker=checker,
        adapters=adapters,
        clock=clock,
    )
