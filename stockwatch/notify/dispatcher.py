"""Fan-out of events to every configured notification channel."""

import asyncio
import logging
import time
from typing import Iterable, Optional

from stockwatch import metrics
from stockwatch.detect.state_tracker import NotificationEvent
from stockwatch.notify.base import (
    ChannelDeliveryError,
    DeliveryReport,
    Message,
    NotificationChannel,
    OperatorAlert,
)
from stockwatch.notify.formatters import format_event, format_operator_alert

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Sends each event to all channels independently.

    Channels run concurrently, each bounded by channel_timeout. A failing
    channel is logged and counted; it never affects the other channels or
    the caller, and it is not retried here.
    """

    def __init__(
        self,
        channels: Iterable[NotificationChannel],
        operator_channels: Iterable[str] = (),
        channel_timeout: float = 15.0,
    ):
        self.channels = list(channels)
        self.operator_channels = set(operator_channels)
        self.channel_timeout = channel_timeout

        unknown = self.operator_channels - {c.name for c in self.channels}
        if unknown:
            logger.warning(f"Operator channels not configured: {sorted(unknown)}")

    async def dispatch(self, event: NotificationEvent) -> list[DeliveryReport]:
        """
        Deliver an event to every channel.

        Returns:
            One DeliveryReport per channel, in channel order
        """
        if not self.channels:
            logger.warning(f"No notification channels configured; dropping event for {event.link_url}")
            return []

        message = format_event(event)
        tasks = []
        for channel in self.channels:
            if not channel.accepts(event):
                tasks.append(self._suppressed(channel))
            else:
                recipients = channel.resolve_recipients(event.series)
                tasks.append(self._deliver(channel, message, recipients, event.target))

        reports = await asyncio.gather(*tasks)
        succeeded = sum(1 for r in reports if r.success)
        logger.info(
            f"Dispatched {event.reason.value} for {event.brand} {event.model} at {event.target}: "
            f"{succeeded}/{len(reports)} channels"
        )
        return list(reports)

    async def dispatch_operator_alert(self, alert: OperatorAlert) -> list[DeliveryReport]:
        """Deliver an operator alert to the operator channels only."""
        metrics.record_operator_alert(alert.target, alert.kind.value)
        logger.warning(
            f"Operator alert ({alert.kind.value}) for {alert.target}: {alert.detail}",
            extra={"event": "operator_alert", "target": alert.target, "url": alert.link_url},
        )

        channels = [c for c in self.channels if c.name in self.operator_channels]
        if not channels:
            return []

        message = format_operator_alert(alert)
        reports = await asyncio.gather(*(
            self._deliver(channel, message, channel.recipients.default, alert.target)
            for channel in channels
        ))
        return list(reports)

    async def _suppressed(self, channel: NotificationChannel) -> DeliveryReport:
        metrics.record_notification_suppressed(channel.name)
        return DeliveryReport(channel=channel.name, success=False, suppressed=True)

    async def _deliver(
        self,
        channel: NotificationChannel,
        message: Message,
        recipients: list[str],
        target: Optional[str] = None,
    ) -> DeliveryReport:
        start_time = time.monotonic()
        error = None
        try:
            await asyncio.wait_for(channel.send(message, recipients), timeout=self.channel_timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            error = f"timed out after {self.channel_timeout:.1f}s"
        except ChannelDeliveryError as e:
            error = str(e)
        except Exception as e:
            logger.exception(f"Unexpected error in channel {channel.name}")
            error = f"{type(e).__name__}: {e}"

        duration = time.monotonic() - start_time
        success = error is None
        metrics.record_notification(channel.name, success, duration)

        log = logger.info if success else logger.error
        log(
            f"Dispatch to {channel.name}: {'ok' if success else error}",
            extra={
                "event": "dispatch_attempt",
                "channel": channel.name,
                "target": target,
                "success": success,
                "recipients": recipients,
                "error": error,
                "duration_ms": int(duration * 1000),
            },
        )
        return DeliveryReport(
            channel=channel.name,
            success=success,
            recipients=list(recipients),
            error=error,
            duration_ms=int(duration * 1000),
        )

    async def close(self) -> None:
        for channel in self.channels:
            try:
                await channel.close()
            except Exception as e:
                logger.error(f"Error closing channel {channel.name}: {e}")
