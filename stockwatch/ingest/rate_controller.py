"""Per-link politeness delays, exponential backoff and CAPTCHA policy."""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from stockwatch import metrics
from stockwatch.config import TargetConfig
from stockwatch.ingest.base import Outcome

logger = logging.getLogger(__name__)

LinkKey = tuple[str, str]


@dataclass
class RateState:
    """Mutable timing record for one link, owned by that link's task."""

    next_eligible_at: float
    current_backoff: float
    consecutive_failures: int = 0
    consecutive_captchas: int = 0
    reduced_priority: bool = False
    disabled: bool = False


class CaptchaPolicy(Protocol):
    """Decides what a CAPTCHA hit does beyond the maximum backoff."""

    def on_captcha(self, state: RateState, config: TargetConfig) -> None:
        ...


class MaxBackoffPolicy:
    """Maximum backoff plus reduced scheduling priority."""

    def on_captcha(self, state: RateState, config: TargetConfig) -> None:
        state.reduced_priority = True


class DisableAfterPolicy(MaxBackoffPolicy):
    """Like MaxBackoffPolicy, but disables the link after N consecutive CAPTCHAs."""

    def __init__(self, max_captchas: int):
        if max_captchas < 1:
            raise ValueError("max_captchas must be >= 1")
        self.max_captchas = max_captchas

    def on_captcha(self, state: RateState, config: TargetConfig) -> None:
        super().on_captcha(state, config)
        if state.consecutive_captchas >= self.max_captchas:
            state.disabled = True


class RateController:
    """
    Decides when each link may be checked next.

    Success schedules the next check uniformly inside the target's delay
    window and resets backoff. TransientError and Blocked back off
    exponentially (min, 2*min, 4*min ... capped at max). CaptchaDetected
    jumps straight to the maximum backoff and hands the state to the
    configured CaptchaPolicy.
    """

    def __init__(
        self,
        captcha_policy: Optional[CaptchaPolicy] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.captcha_policy = captcha_policy or MaxBackoffPolicy()
        self._rng = rng or random.Random()
        self._clock = clock
        self._states: dict[LinkKey, RateState] = {}

    def register(self, key: LinkKey, config: TargetConfig, now: Optional[float] = None) -> RateState:
        """Create the link's state (eligible immediately) unless it already exists."""
        state = self._states.get(key)
        if state is None:
            state = RateState(
                next_eligible_at=self._clock() if now is None else now,
                current_backoff=config.min_backoff,
            )
            self._states[key] = state
        return state

    def forget(self, key: LinkKey) -> None:
        """Drop the state of a link removed by a configuration reload."""
        self._states.pop(key, None)

    def state_for(self, key: LinkKey) -> Optional[RateState]:
        return self._states.get(key)

    def states(self) -> dict[LinkKey, RateState]:
        return dict(self._states)

    def is_eligible(self, config: TargetConfig, key: LinkKey, now: float) -> bool:
        state = self.register(key, config, now)
        return not state.disabled and now >= state.next_eligible_at

    def seconds_until_eligible(self, config: TargetConfig, key: LinkKey, now: float) -> float:
        state = self.register(key, config, now)
        return max(0.0, state.next_eligible_at - now)

    def record_outcome(
        self, config: TargetConfig, key: LinkKey, outcome: Outcome, now: float
    ) -> RateState:
        """
        Update the link's timing after a completed check.

        Args:
            config: Target timing policy
            key: Link key (target, url)
            outcome: Outcome of the check
            now: Time the check completed

        Returns:
            The updated RateState
        """
        state = self.register(key, config, now)

        if outcome is Outcome.SUCCESS:
            state.current_backoff = config.min_backoff
            state.consecutive_failures = 0
            state.consecutive_captchas = 0
            state.reduced_priority = False
            state.next_eligible_at = now + self._rng.uniform(config.min_delay, config.max_delay)

        elif outcome is Outcome.CAPTCHA_DETECTED:
            state.consecutive_failures += 1
            state.consecutive_captchas += 1
            state.current_backoff = config.max_backoff
            state.next_eligible_at = now + state.current_backoff
            self.captcha_policy.on_captcha(state, config)
            if state.disabled:
                metrics.record_link_disabled(config.name)
                logger.warning(
                    f"{config.name}: link {key[1]} disabled after "
                    f"{state.consecutive_captchas} consecutive CAPTCHAs"
                )

        else:
            if state.consecutive_failures == 0:
                state.current_backoff = config.min_backoff
            else:
                state.current_backoff = min(state.current_backoff * 2, config.max_backoff)
            state.consecutive_failures += 1
            state.consecutive_captchas = 0
            state.next_eligible_at = now + state.current_backoff

        metrics.record_rate_state(config.name, state.current_backoff, state.consecutive_failures)
        return state


def build_captcha_policy(disable_after: int) -> CaptchaPolicy:
    """CAPTCHA_DISABLE_AFTER=0 keeps links enabled forever."""
    if disable_after > 0:
        return DisableAfterPolicy(disable_after)
    return MaxBackoffPolicy()
