"""Push notification services: Pushover, Pushbullet and PagerDuty."""

import logging

from stockwatch.notify.base import ChannelDeliveryError, Message, Severity
from stockwatch.notify.channels.webhooks import HttpChannel

logger = logging.getLogger(__name__)


class PushoverChannel(HttpChannel):
    """Pushover; recipients are user/group keys."""

    name = "pushover"
    API_URL = "https://api.pushover.net/1/messages.json"

    def __init__(self, token: str, priority: int = 0, retry: int = 0, expire: int = 0, **kwargs):
        super().__init__(**kwargs)
        self.token = token
        self.priority = priority
        self.retry = retry
        self.expire = expire

    def build_payload(self, message: Message, user: str) -> dict:
        payload = {
            "token": self.token,
            "user": user,
            "title": message.title,
            "message": message.plain_text(),
            "priority": self.priority,
        }
        if message.url:
            payload["url"] = message.url
        # Emergency priority requires retry/expire
        if self.priority == 2:
            payload["retry"] = self.retry or 60
            payload["expire"] = self.expire or 3600
        return payload

    async def send(self, message: Message, recipients: list[str]) -> None:
        if not recipients:
            raise ChannelDeliveryError(self.name, "no Pushover user configured")
        for user in recipients:
            await self._request("POST", self.API_URL, ok_statuses=(200,), data=self.build_payload(message, user))


class PushbulletChannel(HttpChannel):
    """Pushbullet; recipients are account emails (empty pushes to own devices)."""

    name = "pushbullet"
    API_URL = "https://api.pushbullet.com/v2/pushes"

    def __init__(self, access_token: str, **kwargs):
        super().__init__(**kwargs)
        self.access_token = access_token

    async def send(self, message: Message, recipients: list[str]) -> None:
        payload = {"title": message.title, "body": message.plain_text()}
        if message.url:
            payload.update(type="link", url=message.url)
        else:
            payload["type"] = "note"

        headers = {"Access-Token": self.access_token}
        for email in recipients or [None]:
            body = dict(payload, email=email) if email else payload
            await self._request("POST", self.API_URL, ok_statuses=(200,), json=body, headers=headers)


class PagerDutyChannel(HttpChannel):
    """PagerDuty Events API v2; recipients are integration (routing) keys."""

    name = "pagerduty"
    API_URL = "https://events.pagerduty.com/v2/enqueue"
    VALID_SEVERITIES = ("critical", "error", "warning", "info")

    def __init__(self, severity: str = "info", **kwargs):
        super().__init__(**kwargs)
        if severity not in self.VALID_SEVERITIES:
            raise ValueError(f"Invalid PagerDuty severity: {severity}")
        self.severity = severity

    def _severity_for(self, message: Message) -> str:
        if message.severity is Severity.CRITICAL:
            return "critical"
        if message.severity is Severity.WARNING and self.severity == "info":
            return "warning"
        return self.severity

    async def send(self, message: Message, recipients: list[str]) -> None:
        if not recipients:
            raise ChannelDeliveryError(self.name, "no integration key configured")

        for routing_key in recipients:
            event = {
                "routing_key": routing_key,
                "event_action": "trigger",
                "payload": {
                    "summary": message.title[:1024],
                    "source": "stockwatch",
                    "severity": self._severity_for(message),
                    "custom_details": {name: value for name, value in message.fields},
                },
            }
            if message.url:
                event["links"] = [{"href": message.url, "text": "Product page"}]
            await self._request("POST", self.API_URL, ok_statuses=(202,), json=event)
