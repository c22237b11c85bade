"""Runs one adapter fetch and normalizes the result into an Observation."""

import asyncio
import logging
import time
from typing import Callable, Optional

from stockwatch import metrics
from stockwatch.catalog import Link
from stockwatch.ingest.base import (
    BaseAdapter,
    CaptchaPage,
    HttpBlocked,
    NetworkFailure,
    Observation,
    Outcome,
    ParseAmbiguous,
)
from stockwatch.ingest.filters import LinkFilter
from stockwatch.ingest.proxy_manager import ProxyInfo

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class StockChecker:
    """
    Checks a link through its target's adapter.

    Ordinary network and HTTP failures never raise out of ``check``; they are
    reported as the observation's outcome. Only cancellation propagates.
    """

    def __init__(
        self,
        adapters: dict[str, BaseAdapter],
        link_filter: LinkFilter,
        clock: Callable[[], float] = time.monotonic,
        default_timeout: float = DEFAULT_TIMEOUT,
    ):
        self._adapters = dict(adapters)
        self.link_filter = link_filter
        self._clock = clock
        self.default_timeout = default_timeout

    def set_adapters(self, adapters: dict[str, BaseAdapter]) -> None:
        self._adapters = dict(adapters)

    def adapter_for(self, target: str) -> BaseAdapter:
        return self._adapters[target]

    async def check(
        self,
        link: Link,
        proxy: Optional[ProxyInfo] = None,
        timeout: Optional[float] = None,
    ) -> Observation:
        """
        Check one link.

        Args:
            link: Link to check
            proxy: Proxy selected for this check, if the target has a pool
            timeout: Maximum duration of the check in seconds

        Returns:
            Observation (outcome is never an exception)
        """
        timeout = timeout or self.default_timeout
        adapter = self._adapters.get(link.target)
        started = time.perf_counter()

        if adapter is None:
            error = f"no adapter configured for target {link.target}"
            logger.error(error)
            return self._failed(link, Outcome.TRANSIENT_ERROR, error, started)

        try:
            raw = await asyncio.wait_for(
                adapter.fetch_and_extract(link.url, proxy=proxy, timeout=timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return self._failed(link, Outcome.TRANSIENT_ERROR, f"timed out after {timeout:.1f}s", started)
        except NetworkFailure as e:
            return self._failed(link, Outcome.TRANSIENT_ERROR, f"network failure: {e}", started)
        except HttpBlocked as e:
            return self._failed(link, Outcome.BLOCKED, f"blocked (HTTP {e.status_code})", started)
        except CaptchaPage as e:
            return self._failed(link, Outcome.CAPTCHA_DETECTED, f"captcha: {e}", started)
        except ParseAmbiguous as e:
            return self._failed(link, Outcome.TRANSIENT_ERROR, f"ambiguous page: {e}", started)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"{link.target}: adapter error for {link.url}")
            return self._failed(link, Outcome.TRANSIENT_ERROR, f"{type(e).__name__}: {e}", started)

        duration = time.perf_counter() - started
        metrics.record_check(link.target, Outcome.SUCCESS.value, duration)
        return Observation(
            timestamp=self._clock(),
            outcome=Outcome.SUCCESS,
            in_stock=raw.in_stock,
            price=raw.price,
            passes_filters=self.link_filter.passes(link, raw.price),
            duration=duration,
        )

    def _failed(self, link: Link, outcome: Outcome, error: str, started: float) -> Observation:
        duration = time.perf_counter() - started
        metrics.record_check(link.target, outcome.value, duration)
        logger.debug(f"{link.target}: {outcome.value} for {link.url}: {error}")
        return Observation(
            timestamp=self._clock(),
            outcome=outcome,
            error=error,
            duration=duration,
        )
