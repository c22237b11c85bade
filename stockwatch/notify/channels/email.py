"""Email channel (SMTP) and carrier email-to-SMS gateways."""

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Callable, Optional

from stockwatch.notify.base import ChannelDeliveryError, Message, NotificationChannel

logger = logging.getLogger(__name__)

# Carrier -> email-to-SMS gateway domain
CARRIER_GATEWAYS = {
    "att": "txt.att.net",
    "attgo": "mms.att.net",
    "bell": "txt.bell.ca",
    "fido": "fido.ca",
    "google": "msg.fi.google.com",
    "koodo": "msg.koodomobile.com",
    "mint": "mailmymobile.net",
    "rogers": "pcs.rogers.com",
    "sprint": "messaging.sprintpcs.com",
    "telus": "msg.telus.com",
    "tmobile": "tmomail.net",
    "uscc": "mms.uscc.net",
    "verizon": "vtext.com",
    "virgin": "vmobl.com",
    "virgin-ca": "vmobile.ca",
    "visible": "vtext.com",
}


def carrier_addresses(numbers: list[str], carriers: list[str]) -> list[str]:
    """
    Pair phone numbers with carriers and build gateway addresses.

    Raises:
        ValueError: On a count mismatch or unknown carrier
    """
    if len(numbers) != len(carriers):
        raise ValueError(
            f"PHONE_NUMBER has {len(numbers)} entries but PHONE_CARRIER has {len(carriers)}"
        )
    addresses = []
    for number, carrier in zip(numbers, carriers):
        gateway = CARRIER_GATEWAYS.get(carrier.strip().lower())
        if gateway is None:
            raise ValueError(f"Unknown phone carrier: {carrier}. Available: {sorted(CARRIER_GATEWAYS)}")
        digits = "".join(ch for ch in number if ch.isdigit())
        addresses.append(f"{digits}@{gateway}")
    return addresses


class EmailChannel(NotificationChannel):
    """SMTP email; recipients are email addresses."""

    name = "email"

    def __init__(
        self,
        smtp_address: str,
        smtp_port: int = 25,
        username: str = "",
        password: str = "",
        sender: Optional[str] = None,
        smtp_factory: Optional[Callable[..., smtplib.SMTP]] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.smtp_address = smtp_address
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.sender = sender or username
        self._smtp_factory = smtp_factory

    def build_email(self, message: Message, recipients: list[str]) -> EmailMessage:
        email = EmailMessage()
        email["Subject"] = message.title
        email["From"] = self.sender
        email["To"] = ", ".join(recipients)
        email.set_content(message.plain_text())
        return email

    def _connect(self) -> smtplib.SMTP:
        if self._smtp_factory:
            return self._smtp_factory(self.smtp_address, self.smtp_port, timeout=30)
        if self.smtp_port == 465:
            return smtplib.SMTP_SSL(
                self.smtp_address, self.smtp_port, timeout=30, context=ssl.create_default_context()
            )
        return smtplib.SMTP(self.smtp_address, self.smtp_port, timeout=30)

    def _send_blocking(self, email: EmailMessage) -> None:
        with self._connect() as smtp:
            smtp.ehlo()
            if self.smtp_port != 465 and smtp.has_extn("starttls"):
                smtp.starttls(context=ssl.create_default_context())
                smtp.ehlo()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(email)

    async def send(self, message: Message, recipients: list[str]) -> None:
        if not recipients:
            raise ChannelDeliveryError(self.name, "no recipients configured")

        email = self.build_email(message, recipients)
        try:
            await asyncio.to_thread(self._send_blocking, email)
        except (smtplib.SMTPException, OSError) as e:
            raise ChannelDeliveryError(self.name, f"{type(e).__name__}: {e}") from e
        logger.debug(f"Sent email to {len(recipients)} recipient(s)")


class SmsGatewayChannel(EmailChannel):
    """Email-to-SMS through carrier gateways; recipients are gateway addresses."""

    name = "phone"

    def build_email(self, message: Message, recipients: list[str]) -> EmailMessage:
        # Gateways drop long messages; keep the body to title and link
        email = EmailMessage()
        email["Subject"] = message.title
        email["From"] = self.sender
        email["To"] = ", ".join(recipients)
        email.set_content(message.url or message.body)
        return email
