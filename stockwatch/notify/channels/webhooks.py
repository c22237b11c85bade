"""Chat webhook channels: Discord, Slack, Telegram and generic JSON webhooks."""

import logging
from typing import Any, Iterable, Optional

import httpx

from stockwatch.notify.base import (
    ChannelDeliveryError,
    Message,
    NotificationChannel,
    RecipientGroups,
)
from stockwatch.notify.formatters import (
    format_discord_embed,
    format_generic_payload,
    format_slack_blocks,
    format_telegram_message,
)

logger = logging.getLogger(__name__)


class HttpChannel(NotificationChannel):
    """Base for channels that deliver over HTTP with a shared httpx client."""

    def __init__(
        self,
        recipients: Optional[RecipientGroups] = None,
        series: Optional[Iterable[str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(recipients=recipients, series=series)
        self._http_client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(
        self,
        method: str,
        url: str,
        ok_statuses: Iterable[int] = (200, 201, 202, 204),
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send a request and map failures to ChannelDeliveryError.

        Raises:
            ChannelDeliveryError: On transport errors or unexpected status
        """
        client = await self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise ChannelDeliveryError(self.name, f"{type(e).__name__}: {e}") from e

        if response.status_code not in tuple(ok_statuses):
            raise ChannelDeliveryError(
                self.name, f"HTTP {response.status_code} - {response.text[:200]}"
            )
        return response


class DiscordChannel(HttpChannel):
    """Discord webhooks; recipients are role/user mentions (notify groups)."""

    name = "discord"

    def __init__(self, webhook_urls: list[str], **kwargs):
        super().__init__(**kwargs)
        if not webhook_urls:
            raise ValueError("Discord channel needs at least one webhook URL")
        self.webhook_urls = list(webhook_urls)

    async def send(self, message: Message, recipients: list[str]) -> None:
        payload = format_discord_embed(message, mentions=recipients)
        for url in self.webhook_urls:
            await self._request("POST", url, ok_statuses=(200, 204), json=payload)
        logger.debug(f"Sent Discord message to {len(self.webhook_urls)} webhook(s)")


class SlackChannel(HttpChannel):
    """Slack chat.postMessage; recipients are channel names or ids."""

    name = "slack"
    API_URL = "https://slack.com/api/chat.postMessage"

    def __init__(self, token: str, **kwargs):
        super().__init__(**kwargs)
        self.token = token

    async def send(self, message: Message, recipients: list[str]) -> None:
        if not recipients:
            raise ChannelDeliveryError(self.name, "no Slack channel configured")

        payload = format_slack_blocks(message)
        headers = {"Authorization": f"Bearer {self.token}"}
        for channel in recipients:
            response = await self._request(
                "POST", self.API_URL, ok_statuses=(200,),
                json={**payload, "channel": channel}, headers=headers,
            )
            data = response.json()
            if not data.get("ok"):
                raise ChannelDeliveryError(self.name, f"{channel}: {data.get('error', 'unknown error')}")


class TelegramChannel(HttpChannel):
    """Telegram Bot API; recipients are chat ids."""

    name = "telegram"

    def __init__(self, access_token: str, **kwargs):
        super().__init__(**kwargs)
        self.access_token = access_token

    async def send(self, message: Message, recipients: list[str]) -> None:
        if not recipients:
            raise ChannelDeliveryError(self.name, "no chat ids configured")

        url = f"https://api.telegram.org/bot{self.access_token}/sendMessage"
        text = format_telegram_message(message)
        failed = []
        for chat_id in recipients:
            try:
                await self._request(
                    "POST", url, ok_statuses=(200,),
                    json={
                        "chat_id": chat_id,
                        "text": text,
                        "parse_mode": "HTML",
                        "disable_web_page_preview": False,
                    },
                )
            except ChannelDeliveryError as e:
                logger.warning(f"Telegram send to {chat_id} failed: {e}")
                failed.append(chat_id)

        if failed:
            raise ChannelDeliveryError(self.name, f"failed for chat ids {failed}")


class GenericWebhookChannel(HttpChannel):
    """Plain JSON POST; recipients are webhook URLs."""

    name = "webhook"

    def __init__(self, headers: Optional[dict[str, str]] = None, **kwargs):
        super().__init__(**kwargs)
        self.headers = {"Content-Type": "application/json", **(headers or {})}

    async def send(self, message: Message, recipients: list[str]) -> None:
        if not recipients:
            raise ChannelDeliveryError(self.name, "no webhook URLs configured")

        payload = format_generic_payload(message)
        for url in recipients:
            await self._request("POST", url, json=payload, headers=self.headers)
