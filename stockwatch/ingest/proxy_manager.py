"""Per-target proxy pools with round-robin rotation and block cooldowns."""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional
from urllib.parse import urlsplit

from stockwatch import metrics
from stockwatch.ingest.base import Outcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProxyInfo:
    """Proxy information for use in adapters."""

    url: str

    @property
    def display(self) -> str:
        """host:port without credentials, for logs."""
        parts = urlsplit(self.url)
        return f"{parts.hostname}:{parts.port}" if parts.port else str(parts.hostname)

    @classmethod
    def parse(cls, entry: str, default_scheme: str = "http") -> "ProxyInfo":
        """Parse ``[scheme://][user:pass@]host:port``."""
        entry = entry.strip()
        if "://" not in entry:
            entry = f"{default_scheme}://{entry}"
        parts = urlsplit(entry)
        if not parts.hostname:
            raise ValueError(f"Invalid proxy entry: {entry!r}")
        return cls(url=entry)


def load_proxy_list(proxy_dir: str | Path, name: str) -> List[str]:
    """
    Read ``<name>.proxies`` from proxy_dir, falling back to ``global.proxies``.

    Returns:
        Proxy entries (possibly empty)
    """
    proxy_dir = Path(proxy_dir)
    for candidate in (proxy_dir / f"{name}.proxies", proxy_dir / "global.proxies"):
        if candidate.is_file():
            lines = candidate.read_text(encoding="utf-8").splitlines()
            entries = [line.strip() for line in lines if line.strip() and not line.startswith("#")]
            logger.debug(f"Loaded {len(entries)} proxies for {name} from {candidate}")
            return entries
    return []


class ProxyPool:
    """
    Rotating proxy pool for one target.

    The rotation index and block bookkeeping are shared by every link task of
    the target, so selection and reporting go through one lock.
    """

    def __init__(
        self,
        target: str,
        proxies: List[ProxyInfo],
        max_consecutive_blocks: int = 3,
        cooldown_seconds: float = 1200.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.target = target
        self._proxies = list(proxies)
        self._current_index = 0
        self._lock = asyncio.Lock()
        self._clock = clock
        self._max_consecutive_blocks = max(1, max_consecutive_blocks)
        self._cooldown_seconds = cooldown_seconds
        # proxy url -> cooldown_until
        self._cooldowns: Dict[str, float] = {}
        # proxy url -> consecutive blocked outcomes
        self._consecutive_blocks: Dict[str, int] = {}

    @classmethod
    def from_entries(cls, target: str, entries: List[str], **kwargs) -> "ProxyPool":
        proxies = []
        for entry in entries:
            try:
                proxies.append(ProxyInfo.parse(entry))
            except ValueError as e:
                logger.warning(f"Skipping proxy for {target}: {e}")
        return cls(target, proxies, **kwargs)

    @property
    def proxy_count(self) -> int:
        return len(self._proxies)

    def has_proxies(self) -> bool:
        return bool(self._proxies)

    def _is_cooling(self, proxy: ProxyInfo, now: float) -> bool:
        until = self._cooldowns.get(proxy.url)
        if until is None:
            return False
        if now < until:
            return True
        del self._cooldowns[proxy.url]
        return False

    async def acquire(self) -> Optional[ProxyInfo]:
        """
        Get the next proxy in round-robin order, skipping proxies in cooldown.

        If every proxy is cooling down, the one whose cooldown ends first is
        returned rather than going direct.

        Returns:
            ProxyInfo, or None if the pool is empty
        """
        async with self._lock:
            if not self._proxies:
                return None

            now = self._clock()
            count = len(self._proxies)
            for offset in range(count):
                index = (self._current_index + offset) % count
                proxy = self._proxies[index]
                if not self._is_cooling(proxy, now):
                    self._current_index = (index + 1) % count
                    return proxy

            proxy = min(self._proxies, key=lambda p: self._cooldowns.get(p.url, 0.0))
            self._current_index = (self._proxies.index(proxy) + 1) % count
            logger.warning(
                f"All {count} proxies for {self.target} in cooldown, "
                f"using {proxy.display} (cooldown ends soonest)"
            )
            return proxy

    async def report_success(self, proxy: ProxyInfo) -> None:
        """Reset block bookkeeping after a successful check."""
        async with self._lock:
            self._consecutive_blocks.pop(proxy.url, None)
            self._cooldowns.pop(proxy.url, None)

    async def report_blocked(self, proxy: ProxyInfo) -> None:
        """
        Record a Blocked or CAPTCHA outcome for a proxy.

        After max_consecutive_blocks the proxy is put in cooldown.
        """
        async with self._lock:
            blocks = self._consecutive_blocks.get(proxy.url, 0) + 1
            self._consecutive_blocks[proxy.url] = blocks

            if blocks >= self._max_consecutive_blocks:
                self._cooldowns[proxy.url] = self._clock() + self._cooldown_seconds
                self._consecutive_blocks[proxy.url] = 0
                metrics.record_proxy_cooldown(self.target)
                logger.warning(
                    f"Proxy {proxy.display} for {self.target} in cooldown for "
                    f"{self._cooldown_seconds:.0f}s after {blocks} consecutive blocks"
                )
            else:
                logger.debug(
                    f"Proxy {proxy.display} for {self.target} blocked "
                    f"({blocks}/{self._max_consecutive_blocks})"
                )

    async def report(self, proxy: Optional[ProxyInfo], outcome: Outcome) -> None:
        """Feed a check outcome back into the proxy's block bookkeeping."""
        if proxy is None:
            return
        if outcome is Outcome.SUCCESS:
            await self.report_success(proxy)
        elif outcome in (Outcome.BLOCKED, Outcome.CAPTCHA_DETECTED):
            await self.report_blocked(proxy)

    def in_cooldown(self, proxy: ProxyInfo) -> bool:
        return self._is_cooling(proxy, self._clock())

    def stats(self) -> dict:
        now = self._clock()
        return {
            "total": len(self._proxies),
            "in_cooldown": sum(1 for p in self._proxies if self._cooldowns.get(p.url, 0.0) > now),
        }
