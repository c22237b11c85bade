"""Twilio SMS channel."""

import logging

import httpx

from stockwatch.notify.base import ChannelDeliveryError, Message
from stockwatch.notify.channels.webhooks import HttpChannel

logger = logging.getLogger(__name__)

# Twilio rejects longer bodies
MAX_BODY_LENGTH = 1600


class TwilioChannel(HttpChannel):
    """Twilio Messages API; recipients are E.164 phone numbers."""

    name = "twilio"

    def __init__(self, account_sid: str, auth_token: str, from_number: str, **kwargs):
        super().__init__(**kwargs)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    @property
    def api_url(self) -> str:
        return f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}/Messages.json"

    async def send(self, message: Message, recipients: list[str]) -> None:
        if not recipients:
            raise ChannelDeliveryError(self.name, "no destination number configured")

        body = message.plain_text()[:MAX_BODY_LENGTH]
        auth = httpx.BasicAuth(self.account_sid, self.auth_token)
        for number in recipients:
            await self._request(
                "POST", self.api_url, ok_statuses=(200, 201),
                data={"From": self.from_number, "To": number, "Body": body},
                auth=auth,
            )
            logger.debug(f"Sent SMS to {number[-4:].rjust(len(number), '*')}")
