"""Shared fixtures for stockwatch tests."""

from decimal import Decimal
from typing import Optional

import pytest

from stockwatch.catalog import Catalog, Link, Target
from stockwatch.config import TargetConfig
from stockwatch.ingest.base import BaseAdapter, RawStockData
from stockwatch.notify.base import ChannelDeliveryError, Message, NotificationChannel


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedAdapter(BaseAdapter):
    """Adapter returning (or raising) queued results in order; repeats the last one."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls: list[tuple[str, Optional[object]]] = []
        self.closed = False

    async def fetch_and_extract(self, url, proxy=None, timeout=None):
        self.calls.append((url, proxy))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result

    async def close(self):
        self.closed = True


class RecordingChannel(NotificationChannel):
    """Channel that records sends, optionally failing."""

    def __init__(self, name: str = "recording", fail: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.name = name
        self.fail = fail
        self.sent: list[tuple[Message, list[str]]] = []

    async def send(self, message, recipients):
        if self.fail:
            raise ChannelDeliveryError(self.name, "simulated failure")
        self.sent.append((message, list(recipients)))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def target_config():
    return TargetConfig(
        name="shop",
        min_delay=5.0,
        max_delay=10.0,
        min_backoff=1.0,
        max_backoff=8.0,
        timeout=2.0,
    )


@pytest.fixture
def make_link():
    def _make(
        url: str = "https://shop.example/gpu-1",
        target: str = "shop",
        brand: str = "nvidia",
        series: str = "3080",
        model: str = "founders edition",
        price_ceiling: str = "0",
    ) -> Link:
        return Link(
            target=target,
            brand=brand,
            series=series,
            model=model,
            url=url,
            price_ceiling=Decimal(price_ceiling),
        )

    return _make


@pytest.fixture
def make_catalog(target_config):
    def _make(links: list[Link], config: Optional[TargetConfig] = None) -> Catalog:
        config = config or target_config
        return Catalog([Target(config=config, links=list(links))])

    return _make


@pytest.fixture
def in_stock():
    return RawStockData(in_stock=True, price=Decimal("699.99"))


@pytest.fixture
def out_of_stock():
    return RawStockData(in_stock=False, price=Decimal("699.99"))


@pytest.fixture
def scripted_adapter():
    return ScriptedAdapter


@pytest.fixture
def recording_channel():
    return RecordingChannel
