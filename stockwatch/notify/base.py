"""Notification channel interface and delivery value types."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from stockwatch.detect.state_tracker import NotificationEvent


class ChannelDeliveryError(RuntimeError):
    """Raised by a channel when a send fails. Isolated to that channel."""

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel}: {message}")
        self.channel = channel


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertKind(str, Enum):
    """Operator alert categories."""

    CAPTCHA = "captcha"
    BLOCKED_STREAK = "blocked_streak"
    LINK_DISABLED = "link_disabled"


@dataclass(frozen=True)
class OperatorAlert:
    """Alert for the operator about a link that needs attention."""

    kind: AlertKind
    target: str
    link_url: str
    detail: str
    streak: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Message:
    """Channel-neutral rendering of an event or alert."""

    title: str
    body: str
    url: Optional[str] = None
    fields: tuple[tuple[str, str], ...] = ()
    severity: Severity = Severity.INFO
    series: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def plain_text(self) -> str:
        lines = [self.title, self.body]
        lines.extend(f"{name}: {value}" for name, value in self.fields)
        if self.url:
            lines.append(self.url)
        return "\n".join(line for line in lines if line)


@dataclass
class DeliveryReport:
    """Result of one channel's delivery attempt."""

    channel: str
    success: bool
    recipients: list[str] = field(default_factory=list)
    suppressed: bool = False
    error: Optional[str] = None
    duration_ms: int = 0


@dataclass
class RecipientGroups:
    """
    Default recipients plus per-series overrides.

    An override replaces the default list for its series; it is not merged.
    """

    default: list[str] = field(default_factory=list)
    by_series: dict[str, list[str]] = field(default_factory=dict)

    def __post_init__(self):
        self.by_series = {k.strip().lower(): list(v) for k, v in self.by_series.items()}

    def resolve(self, series: Optional[str]) -> list[str]:
        if series:
            override = self.by_series.get(series.strip().lower())
            if override is not None:
                return list(override)
        return list(self.default)


class NotificationChannel(ABC):
    """
    A delivery channel (chat webhook, push service, SMS, email, ...).

    Subclasses implement ``send`` and raise ChannelDeliveryError on failure.
    """

    name: str = "channel"

    def __init__(
        self,
        recipients: Optional[RecipientGroups] = None,
        series: Optional[Iterable[str]] = None,
    ):
        self.recipients = recipients or RecipientGroups()
        # Empty means the channel accepts every series
        self.series = {s.strip().lower() for s in (series or []) if s.strip()}

    def accepts(self, event: NotificationEvent) -> bool:
        if not self.series:
            return True
        return event.series.strip().lower() in self.series

    def resolve_recipients(self, series: Optional[str]) -> list[str]:
        return self.recipients.resolve(series)

    @abstractmethod
    async def send(self, message: Message, recipients: list[str]) -> None:
        """
        Deliver a message.

        Args:
            message: Rendered message
            recipients: Resolved recipients (channel-specific meaning: chat
                ids, mention groups, phone numbers, addresses)

        Raises:
            ChannelDeliveryError: If delivery failed
        """
        pass

    async def close(self) -> None:
        return None
