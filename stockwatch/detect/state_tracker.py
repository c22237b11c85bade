"""Stock state machine: decides when an observation deserves a notification."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from stockwatch import metrics
from stockwatch.catalog import Link
from stockwatch.ingest.base import Observation, Outcome

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    """Result of evaluating one observation against a link's state."""

    NO_CHANGE = "no_change"
    BECAME_AVAILABLE = "became_available"
    BECAME_UNAVAILABLE = "became_unavailable"
    REMAINS_AVAILABLE_RENOTIFY = "remains_available_renotify"
    PRICE_DROPPED = "price_dropped"
    IGNORE = "ignore"

    @property
    def notifies(self) -> bool:
        return self in NOTIFYING_DECISIONS


NOTIFYING_DECISIONS = frozenset(
    {Decision.BECAME_AVAILABLE, Decision.REMAINS_AVAILABLE_RENOTIFY, Decision.PRICE_DROPPED}
)


class EventReason(str, Enum):
    """Why a notification is being sent."""

    IN_STOCK = "in_stock"  # first seen in stock for this streak
    STILL_IN_STOCK = "still_in_stock"  # renotify interval elapsed
    PRICE_DROP = "price_drop"


REASON_BY_DECISION = {
    Decision.BECAME_AVAILABLE: EventReason.IN_STOCK,
    Decision.REMAINS_AVAILABLE_RENOTIFY: EventReason.STILL_IN_STOCK,
    Decision.PRICE_DROPPED: EventReason.PRICE_DROP,
}


@dataclass
class LinkState:
    """Last committed observation and notification bookkeeping for one link."""

    last_observation: Optional[Observation] = None
    available: bool = False
    # Set only while available; cleared when the streak ends
    notified_at: Optional[float] = None
    notified_price: Optional[Decimal] = None


@dataclass(frozen=True)
class NotificationEvent:
    """Immutable value handed to the dispatcher."""

    target: str
    link_url: str
    brand: str
    series: str
    model: str
    price: Optional[Decimal]
    timestamp: datetime
    reason: EventReason
    link: Link = field(compare=False, repr=False)

    @property
    def title(self) -> str:
        return f"{self.brand} {self.model}"


class StateTracker:
    """Per-link availability state machine."""

    def __init__(
        self,
        renotify_interval: float,
        renotify_on_price_drop: bool = False,
        log_restock_ended: bool = True,
    ):
        """
        Args:
            renotify_interval: Seconds between alerts for a continuing in-stock
                streak; 0 disables re-notification
            renotify_on_price_drop: Alert again inside the interval when the
                price falls below the last notified price
            log_restock_ended: Log an INFO line when a streak ends
        """
        if renotify_interval < 0:
            raise ValueError("renotify_interval must not be negative")
        self.renotify_interval = renotify_interval
        self.renotify_on_price_drop = renotify_on_price_drop
        self.log_restock_ended = log_restock_ended
        self._states: dict[tuple[str, str], LinkState] = {}

    def state_for(self, link: Link) -> LinkState:
        state = self._states.get(link.key)
        if state is None:
            state = LinkState()
            self._states[link.key] = state
        return state

    def peek(self, key: tuple[str, str]) -> Optional[LinkState]:
        return self._states.get(key)

    def forget(self, key: tuple[str, str]) -> None:
        self._states.pop(key, None)

    def evaluate(self, link: Link, observation: Observation) -> Decision:
        """
        Evaluate an observation and commit the resulting state.

        Errors never change state. Filtered-out or out-of-stock observations
        end an in-stock streak. An in-stock observation notifies once per
        streak, then again only after renotify_interval.
        """
        if observation.outcome is not Outcome.SUCCESS:
            return Decision.NO_CHANGE

        state = self.state_for(link)
        now = observation.timestamp
        was_available = state.available
        state.last_observation = observation

        if not observation.passes_filters:
            if was_available:
                decision = self._end_streak(link, state, "filtered out")
            else:
                decision = Decision.IGNORE

        elif not observation.in_stock:
            if was_available:
                decision = self._end_streak(link, state, "out of stock")
            else:
                decision = Decision.NO_CHANGE

        elif not was_available:
            state.available = True
            state.notified_at = now
            state.notified_price = observation.price
            decision = Decision.BECAME_AVAILABLE

        elif self.renotify_interval > 0 and now - state.notified_at >= self.renotify_interval:
            state.notified_at = now
            state.notified_price = observation.price
            decision = Decision.REMAINS_AVAILABLE_RENOTIFY

        elif self._price_dropped(state, observation.price):
            state.notified_at = now
            state.notified_price = observation.price
            decision = Decision.PRICE_DROPPED

        else:
            decision = Decision.NO_CHANGE

        if decision is not Decision.NO_CHANGE:
            metrics.record_transition(link.target, decision.value)
        return decision

    def _price_dropped(self, state: LinkState, price: Optional[Decimal]) -> bool:
        if not self.renotify_on_price_drop or price is None or state.notified_price is None:
            return False
        return price < state.notified_price

    def _end_streak(self, link: Link, state: LinkState, why: str) -> Decision:
        state.available = False
        state.notified_at = None
        state.notified_price = None
        if self.log_restock_ended:
            logger.info(
                f"Restock ended: {link.label} at {link.target} ({why})",
                extra={"event": "restock_ended", "target": link.target, "url": link.url},
            )
        return Decision.BECAME_UNAVAILABLE

    @staticmethod
    def build_event(link: Link, observation: Observation, decision: Decision) -> NotificationEvent:
        """Build the event for a notifying decision."""
        if not decision.notifies:
            raise ValueError(f"Decision {decision.value} does not produce a notification")
        return NotificationEvent(
            target=link.target,
            link_url=link.url,
            brand=link.brand,
            series=link.series,
            model=link.model,
            price=observation.price,
            timestamp=datetime.now(timezone.utc),
            reason=REASON_BY_DECISION[decision],
            link=link,
        )
