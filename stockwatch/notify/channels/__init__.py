"""Notification channel registry."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from stockwatch.config import ConfigurationError, Settings, parse_list
from stockwatch.notify.base import NotificationChannel, RecipientGroups
from stockwatch.notify.channels.email import EmailChannel, SmsGatewayChannel, carrier_addresses
from stockwatch.notify.channels.hue import PhilipsHueChannel
from stockwatch.notify.channels.push import PagerDutyChannel, PushbulletChannel, PushoverChannel
from stockwatch.notify.channels.redis_queue import RedisChannel
from stockwatch.notify.channels.sms import TwilioChannel
from stockwatch.notify.channels.webhooks import (
    DiscordChannel,
    GenericWebhookChannel,
    HttpChannel,
    SlackChannel,
    TelegramChannel,
)

logger = logging.getLogger(__name__)


def _recipients(settings: Settings, channel: str, default: list[str]) -> RecipientGroups:
    return RecipientGroups(
        default=default,
        by_series=settings.notify_group_series.get(channel, {}),
    )


def _channel_kwargs(settings: Settings, channel: str, default: list[str]) -> dict:
    return {
        "recipients": _recipients(settings, channel, default),
        "series": settings.channel_series.get(channel, []),
    }


def build_channels(
    settings: Settings, client: Optional[httpx.AsyncClient] = None
) -> list[NotificationChannel]:
    """
    Instantiate every channel whose credentials are configured.

    Args:
        settings: Application settings
        client: Shared HTTP client for HTTP-based channels (one per channel if None)

    Raises:
        ConfigurationError: If a channel is partially or wrongly configured
    """
    channels: list[NotificationChannel] = []
    http = {"client": client}

    try:
        if settings.discord_web_hook:
            channels.append(DiscordChannel(
                parse_list(settings.discord_web_hook),
                **_channel_kwargs(settings, "discord", parse_list(settings.discord_notify_group)),
                **http,
            ))

        if settings.slack_token:
            channels.append(SlackChannel(
                settings.slack_token,
                **_channel_kwargs(settings, "slack", parse_list(settings.slack_channel)),
                **http,
            ))

        if settings.telegram_access_token:
            channels.append(TelegramChannel(
                settings.telegram_access_token,
                **_channel_kwargs(settings, "telegram", parse_list(settings.telegram_chat_id)),
                **http,
            ))

        if settings.webhook_urls:
            channels.append(GenericWebhookChannel(
                **_channel_kwargs(settings, "webhook", parse_list(settings.webhook_urls)),
                **http,
            ))

        if settings.pushover_token:
            channels.append(PushoverChannel(
                settings.pushover_token,
                priority=settings.pushover_priority,
                retry=settings.pushover_retry,
                expire=settings.pushover_expire,
                **_channel_kwargs(settings, "pushover", parse_list(settings.pushover_user)),
                **http,
            ))

        if settings.pushbullet:
            channels.append(PushbulletChannel(
                settings.pushbullet,
                **_channel_kwargs(settings, "pushbullet", []),
                **http,
            ))

        if settings.pagerduty_integration_key:
            channels.append(PagerDutyChannel(
                severity=settings.pagerduty_severity,
                **_channel_kwargs(settings, "pagerduty", [settings.pagerduty_integration_key]),
                **http,
            ))

        if settings.twilio_account_sid:
            if not (settings.twilio_auth_token and settings.twilio_from_number):
                raise ValueError("TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER are required")
            channels.append(TwilioChannel(
                settings.twilio_account_sid,
                settings.twilio_auth_token,
                settings.twilio_from_number,
                **_channel_kwargs(settings, "twilio", parse_list(settings.twilio_to_number)),
                **http,
            ))

        if settings.smtp_address or settings.email_username:
            smtp = {
                "smtp_address": settings.smtp_address or "localhost",
                "smtp_port": settings.smtp_port,
                "username": settings.email_username,
                "password": settings.email_password,
            }
            if settings.email_to or settings.email_username:
                to = parse_list(settings.email_to) or [settings.email_username]
                channels.append(EmailChannel(**smtp, **_channel_kwargs(settings, "email", to)))

            if settings.phone_number:
                addresses = carrier_addresses(
                    parse_list(settings.phone_number), parse_list(settings.phone_carrier)
                )
                channels.append(SmsGatewayChannel(**smtp, **_channel_kwargs(settings, "phone", addresses)))

        if settings.philips_hue_lan_bridge_ip:
            if not settings.philips_hue_api_key:
                raise ValueError("PHILIPS_HUE_API_KEY is required")
            channels.append(PhilipsHueChannel(
                settings.philips_hue_lan_bridge_ip,
                settings.philips_hue_api_key,
                light_color=settings.philips_hue_light_color,
                light_pattern=settings.philips_hue_light_pattern,
                **_channel_kwargs(settings, "philips_hue", parse_list(settings.philips_hue_light_ids)),
                **http,
            ))

        if settings.redis_url:
            channels.append(RedisChannel(
                settings.redis_url,
                **_channel_kwargs(settings, "redis", [settings.redis_channel]),
            ))
    except ValueError as e:
        raise ConfigurationError(f"Invalid notification channel configuration: {e}") from e

    logger.info(f"Configured notification channels: {[c.name for c in channels] or 'none'}")
    return channels


__all__ = [
    "build_channels",
    "DiscordChannel",
    "EmailChannel",
    "GenericWebhookChannel",
    "HttpChannel",
    "PagerDutyChannel",
    "PhilipsHueChannel",
    "PushbulletChannel",
    "PushoverChannel",
    "RedisChannel",
    "SlackChannel",
    "SmsGatewayChannel",
    "TelegramChannel",
    "TwilioChannel",
]
