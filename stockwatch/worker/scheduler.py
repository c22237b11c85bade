"""Task-per-link monitor loop with per-target admission gates.

Every (target, link) pair gets one long-lived asyncio task. A task sleeps
until its link is eligible, takes a slot from the target's admission gate,
checks the link, commits the outcome to the rate controller and state
tracker, and dispatches a notification when the state tracker asks for one.
"""

import asyncio
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from enum import IntEnum
from typing import Any, Awaitable, Callable, Optional

from stockwatch import metrics
from stockwatch.catalog import Catalog, Link
from stockwatch.config import TargetConfig
from stockwatch.detect.state_tracker import Decision, StateTracker
from stockwatch.ingest.base import Observation, Outcome
from stockwatch.ingest.filters import LinkFilter
from stockwatch.ingest.proxy_manager import ProxyPool
from stockwatch.ingest.rate_controller import RateController, RateState
from stockwatch.ingest.stock_checker import StockChecker
from stockwatch.logging_config import get_logger
from stockwatch.notify.base import AlertKind, OperatorAlert
from stockwatch.notify.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

LinkKey = tuple[str, str]


class Priority(IntEnum):
    """Admission priority levels."""
    REDUCED = 0
    NORMAL = 1


class AdmissionGate:
    """
    Counting semaphore with two priority levels.

    Waiting normal-priority links are always admitted before waiting
    reduced-priority links.
    """

    def __init__(self, limit: int = 1):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self._active = 0
        self._waiters: dict[Priority, deque[asyncio.Future]] = {p: deque() for p in Priority}

    @property
    def active(self) -> int:
        return self._active

    def waiting(self, priority: Optional[Priority] = None) -> int:
        queues = [self._waiters[priority]] if priority is not None else self._waiters.values()
        return sum(1 for q in queues for fut in q if not fut.done())

    async def acquire(self, priority: Priority = Priority.NORMAL) -> None:
        if self._active < self.limit and not self.waiting():
            self._active += 1
            return

        fut = asyncio.get_running_loop().create_future()
        self._waiters[priority].append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            # Slot was handed over just before the cancellation landed
            if fut.done() and not fut.cancelled():
                self.release()
            raise

    def release(self) -> None:
        self._active -= 1
        self._wake()

    def resize(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self._wake()

    def _wake(self) -> None:
        while self._active < self.limit:
            fut = self._next_waiter()
            if fut is None:
                return
            self._active += 1
            fut.set_result(None)

    def _next_waiter(self) -> Optional[asyncio.Future]:
        for priority in (Priority.NORMAL, Priority.REDUCED):
            queue = self._waiters[priority]
            while queue:
                fut = queue.popleft()
                if not fut.done():
                    return fut
        return None

    @asynccontextmanager
    async def slot(self, priority: Priority = Priority.NORMAL):
        await self.acquire(priority)
        try:
            yield
        finally:
            self.release()


class MonitorScheduler:
    """Supervisor owning every link task."""

    def __init__(
        self,
        catalog: Catalog,
        rate_controller: RateController,
        checker: StockChecker,
        tracker: StateTracker,
        dispatcher: NotificationDispatcher,
        link_filter: LinkFilter,
        proxy_pools: Optional[dict[str, ProxyPool]] = None,
        blocked_alert_streak: int = 5,
        captcha_alerts: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._catalog = catalog
        self.rate_controller = rate_controller
        self.checker = checker
        self.tracker = tracker
        self.dispatcher = dispatcher
        self.link_filter = link_filter
        self._proxy_pools = dict(proxy_pools or {})
        self.blocked_alert_streak = blocked_alert_streak
        self.captcha_alerts = captcha_alerts
        self._clock = clock
        self._sleep = sleep

        self._gates: dict[str, AdmissionGate] = {}
        self._tasks: dict[LinkKey, asyncio.Task] = {}
        self._blocked_streaks: dict[LinkKey, int] = {}
        self._last_outcomes: dict[LinkKey, Outcome] = {}
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @property
    def running(self) -> bool:
        return self._running

    def gate_for(self, target: str) -> AdmissionGate:
        return self._gates[target]

    def proxy_pool(self, target: str) -> Optional[ProxyPool]:
        return self._proxy_pools.get(target)

    def task_for(self, key: LinkKey) -> Optional[asyncio.Task]:
        return self._tasks.get(key)

    async def start(self) -> None:
        """Start one task per monitored link."""
        if self._running:
            return
        self._running = True
        self._stop_event = asyncio.Event()

        for link in self._monitored_links(self._catalog):
            self._start_link(link)

        self._update_link_metrics()
        logger.info(
            f"Started monitoring {len(self._tasks)} links across {len(self._gates)} targets"
        )

    async def run_until_stopped(self) -> None:
        """Start (if needed) and block until stop() is called."""
        await self.start()
        await self._stop_event.wait()

    def request_stop(self) -> list[asyncio.Task]:
        """
        Mark the scheduler stopped and cancel every link task without waiting.

        A link task that sees the stop after its check has completed exits
        without committing the result.
        """
        self._running = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        return tasks

    async def stop(self) -> None:
        """Cancel every link task and wait for them to exit."""
        if not self._running and not self._tasks:
            return

        tasks = self.request_stop()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        if self._stop_event:
            self._stop_event.set()
        logger.info(f"Stopped {len(tasks)} link tasks")

    async def apply_catalog(
        self, catalog: Catalog, proxy_pools: Optional[dict[str, ProxyPool]] = None
    ) -> None:
        """
        Switch to a reloaded catalog.

        Tasks of removed links are cancelled and their state dropped; new
        links get new tasks; retained links keep their rate and stock state.
        """
        new_links = {link.key: link for link in self._monitored_links(catalog)}
        old_keys = set(self._tasks)

        self._catalog = catalog
        if proxy_pools is not None:
            self._proxy_pools = dict(proxy_pools)

        removed = [key for key in old_keys if key not in new_links]
        removed_tasks = [self._tasks.pop(key) for key in removed]
        for task in removed_tasks:
            task.cancel()
        await asyncio.gather(*removed_tasks, return_exceptions=True)
        for key in removed:
            self.rate_controller.forget(key)
            self.tracker.forget(key)
            self._blocked_streaks.pop(key, None)
            self._last_outcomes.pop(key, None)

        for target in catalog.targets:
            gate = self._gates.get(target.name)
            if gate is not None and gate.limit != target.config.concurrency_limit:
                gate.resize(target.config.concurrency_limit)

        added = [link for key, link in new_links.items() if key not in old_keys]
        if self._running:
            for link in added:
                self._start_link(link)

        self._update_link_metrics()
        logger.info(
            f"Applied catalog: {len(added)} links added, {len(removed)} removed, "
            f"{len(new_links) - len(added)} retained"
        )

    def snapshot(self) -> list[dict]:
        """Per-link rate and stock state for the status API."""
        now = self._clock()
        rows = []
        for link in self._catalog.links():
            if not self.link_filter.passes_static(link):
                continue
            rate = self.rate_controller.state_for(link.key)
            stock = self.tracker.peek(link.key)
            last = stock.last_observation if stock else None
            task = self._tasks.get(link.key)
            rows.append({
                "target": link.target,
                "url": link.url,
                "brand": link.brand,
                "series": link.series,
                "model": link.model,
                "running": bool(task and not task.done()),
                "last_outcome": self._last_outcomes[link.key].value if link.key in self._last_outcomes else None,
                "available": bool(stock and stock.available),
                "in_stock": last.in_stock if last else None,
                "price": str(last.price) if last and last.price is not None else None,
                "next_eligible_in": max(0.0, rate.next_eligible_at - now) if rate else None,
                "current_backoff": rate.current_backoff if rate else None,
                "consecutive_failures": rate.consecutive_failures if rate else 0,
                "reduced_priority": rate.reduced_priority if rate else False,
                "disabled": rate.disabled if rate else False,
            })
        return rows

    def _monitored_links(self, catalog: Catalog) -> list[Link]:
        return self.link_filter.filter_links(list(catalog.links()))

    def _target_config(self, target: str) -> TargetConfig:
        return self._catalog.get_target(target).config

    def _start_link(self, link: Link) -> None:
        config = self._target_config(link.target)
        if link.target not in self._gates:
            self._gates[link.target] = AdmissionGate(config.concurrency_limit)
        self.rate_controller.register(link.key, config, self._clock())

        task = asyncio.create_task(self._run_link(link.key), name=f"link:{link.target}:{link.url}")
        self._tasks[link.key] = task

    def _update_link_metrics(self) -> None:
        counts: dict[str, int] = {}
        for target, _ in self._tasks:
            counts[target] = counts.get(target, 0) + 1
        metrics.update_links_monitored(counts)

    def _owns(self, key: LinkKey) -> bool:
        # False once stop() or a catalog reload has taken the link away from
        # this task, even if the cancellation itself was lost
        return self._running and self._tasks.get(key) is asyncio.current_task()

    async def _run_link(self, key: LinkKey) -> None:
        """Loop for one link until cancelled, removed or disabled."""
        log = get_logger(__name__, target=key[0], url=key[1])
        while self._owns(key):
            link = self._catalog.find_link(key)
            if link is None:
                log.info("Link no longer in catalog; task exiting")
                return

            state = self.rate_controller.state_for(key)
            if state is not None and state.disabled:
                log.warning("Link disabled; task exiting")
                return

            try:
                await self._iteration(link, log)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception(f"Unexpected error checking {link.url}")
                if self._catalog.find_link(key) is not None:
                    await self._sleep(self._target_config(link.target).min_backoff)

    async def _iteration(self, link: Link, log: logging.LoggerAdapter) -> None:
        config = self._target_config(link.target)
        key = link.key

        while not self.rate_controller.is_eligible(config, key, self._clock()):
            state = self.rate_controller.state_for(key)
            if state.disabled:
                return
            await self._sleep(self.rate_controller.seconds_until_eligible(config, key, self._clock()))
            if not self._owns(key):
                return

        state = self.rate_controller.state_for(key)
        priority = Priority.REDUCED if state.reduced_priority else Priority.NORMAL
        pool = self._proxy_pools.get(link.target)

        async with self._gates[link.target].slot(priority):
            proxy = await pool.acquire() if pool else None
            observation = await self.checker.check(link, proxy=proxy, timeout=config.timeout)

        if not self._owns(key):
            log.debug(f"Discarding {observation.outcome.value} result; link task was stopped")
            return

        # Commit: everything below runs only for a completed check
        now = self._clock()
        state = self.rate_controller.record_outcome(config, key, observation.outcome, now)
        decision = self.tracker.evaluate(link, observation)
        self._last_outcomes[key] = observation.outcome
        self._log_outcome(log, link, observation, state, decision, now, proxy)

        if pool:
            await pool.report(proxy, observation.outcome)

        if decision.notifies:
            event = self.tracker.build_event(link, observation, decision)
            await self.dispatcher.dispatch(event)

        await self._escalate(link, observation, state)

    def _log_outcome(
        self,
        log: logging.LoggerAdapter,
        link: Link,
        observation: Observation,
        state: RateState,
        decision: Decision,
        now: float,
        proxy,
    ) -> None:
        level = logging.INFO if observation.ok else logging.WARNING
        summary = (
            "IN STOCK" if observation.ok and observation.in_stock
            else "out of stock" if observation.ok
            else observation.error
        )
        log.log(
            level,
            f"{link.label} at {link.target}: {summary}",
            extra={
                "event": "check_outcome",
                "outcome": observation.outcome.value,
                "in_stock": observation.in_stock,
                "price": str(observation.price) if observation.price is not None else None,
                "passes_filters": observation.passes_filters,
                "decision": decision.value,
                "backoff": state.current_backoff,
                "next_eligible_in": round(state.next_eligible_at - now, 3),
                "consecutive_failures": state.consecutive_failures,
                "proxy": proxy.display if proxy else None,
                "duration_ms": int(observation.duration * 1000),
            },
        )

    async def _escalate(self, link: Link, observation: Observation, state: RateState) -> None:
        """Raise operator alerts for CAPTCHA hits, Blocked streaks and disabled links."""
        key = link.key
        if observation.outcome is Outcome.BLOCKED:
            streak = self._blocked_streaks.get(key, 0) + 1
            self._blocked_streaks[key] = streak
            if self.blocked_alert_streak and streak == self.blocked_alert_streak:
                await self.dispatcher.dispatch_operator_alert(OperatorAlert(
                    kind=AlertKind.BLOCKED_STREAK,
                    target=link.target,
                    link_url=link.url,
                    detail=f"{streak} consecutive blocked responses ({observation.error})",
                    streak=streak,
                ))
        else:
            self._blocked_streaks.pop(key, None)

        if observation.outcome is Outcome.CAPTCHA_DETECTED and self.captcha_alerts:
            await self.dispatcher.dispatch_operator_alert(OperatorAlert(
                kind=AlertKind.CAPTCHA,
                target=link.target,
                link_url=link.url,
                detail=f"CAPTCHA page; backing off {state.current_backoff:.0f}s",
                streak=state.consecutive_captchas,
            ))

        if state.disabled:
            await self.dispatcher.dispatch_operator_alert(OperatorAlert(
                kind=AlertKind.LINK_DISABLED,
                target=link.target,
                link_url=link.url,
                detail=f"Disabled after {state.consecutive_captchas} consecutive CAPTCHAs",
                streak=state.consecutive_captchas,
            ))
