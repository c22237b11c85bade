"""Platform-specific message formatters.

Provides formatters for:
- Channel-neutral Message from a stock event or operator alert
- Discord (embed format)
- Slack (Block Kit)
- Telegram (HTML)
- Generic (JSON)
"""

import html
from decimal import Decimal
from typing import Any, Dict, Optional

from stockwatch.detect.state_tracker import EventReason, NotificationEvent
from stockwatch.notify.base import AlertKind, Message, OperatorAlert, Severity

REASON_TITLES = {
    EventReason.IN_STOCK: "In stock",
    EventReason.STILL_IN_STOCK: "Still in stock",
    EventReason.PRICE_DROP: "Price drop",
}

SEVERITY_COLORS = {
    Severity.INFO: 0x00FF00,  # Green
    Severity.WARNING: 0xFFA500,  # Orange
    Severity.CRITICAL: 0xFF0000,  # Red
}


def format_price(price: Optional[Decimal]) -> str:
    return f"${price:,.2f}" if price is not None else "unknown"


def format_event(event: NotificationEvent) -> Message:
    """Render a stock event."""
    headline = REASON_TITLES.get(event.reason, event.reason.value)
    return Message(
        title=f"🚨 {headline}: {event.brand} {event.model}",
        body=f"{event.brand} {event.model} ({event.series}) is in stock at {event.target}.",
        url=event.link_url,
        fields=(
            ("Store", event.target),
            ("Series", event.series),
            ("Price", format_price(event.price)),
        ),
        severity=Severity.INFO,
        series=event.series,
        timestamp=event.timestamp,
    )


def format_operator_alert(alert: OperatorAlert) -> Message:
    """Render an operator alert."""
    if alert.kind is AlertKind.BLOCKED_STREAK:
        title = f"⚠️ {alert.target}: blocked {alert.streak} times in a row"
        severity = Severity.WARNING
    elif alert.kind is AlertKind.LINK_DISABLED:
        title = f"⛔ {alert.target}: link disabled"
        severity = Severity.CRITICAL
    else:
        title = f"🤖 {alert.target}: CAPTCHA detected"
        severity = Severity.WARNING

    return Message(
        title=title,
        body=alert.detail,
        url=alert.link_url,
        fields=(("Store", alert.target), ("Streak", str(alert.streak))),
        severity=severity,
        timestamp=alert.timestamp,
    )


def format_discord_embed(message: Message, mentions: Optional[list[str]] = None) -> Dict[str, Any]:
    """
    Format a message as a Discord webhook payload.

    Args:
        message: Rendered message
        mentions: Role/user mentions prepended to the content

    Returns:
        Discord webhook payload
    """
    embed = {
        "title": message.title[:256],
        "description": message.body,
        "color": SEVERITY_COLORS[message.severity],
        "fields": [
            {"name": name, "value": value or "-", "inline": True}
            for name, value in message.fields
        ],
        "footer": {"text": "stockwatch"},
        "timestamp": message.timestamp.isoformat(),
    }
    if message.url:
        embed["url"] = message.url

    payload: Dict[str, Any] = {"embeds": [embed], "username": "stockwatch"}
    if mentions:
        payload["content"] = " ".join(mentions)
    return payload


def format_slack_blocks(message: Message) -> Dict[str, Any]:
    """Format a message as Slack Block Kit blocks (with text fallback)."""
    blocks: list[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": message.title[:150], "emoji": True},
        },
        {"type": "section", "text": {"type": "mrkdwn", "text": message.body}},
    ]
    if message.fields:
        blocks.append({
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*{name}:*\n{value}"}
                for name, value in message.fields
            ],
        })
    if message.url:
        blocks.append({
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "View product"},
                    "url": message.url,
                }
            ],
        })
    return {"text": message.title, "blocks": blocks}


def format_telegram_message(message: Message) -> str:
    """Format a message as Telegram HTML."""
    lines = [f"<b>{html.escape(message.title)}</b>", html.escape(message.body)]
    for name, value in message.fields:
        lines.append(f"<b>{html.escape(name)}:</b> {html.escape(value)}")
    if message.url:
        lines.append(f'<a href="{html.escape(message.url, quote=True)}">View product</a>')
    return "\n".join(lines)


def format_generic_payload(message: Message) -> Dict[str, Any]:
    """Format a message as a flat JSON payload."""
    return {
        "title": message.title,
        "body": message.body,
        "url": message.url,
        "severity": message.severity.value,
        "series": message.series,
        "fields": {name: value for name, value in message.fields},
        "timestamp": message.timestamp.isoformat(),
    }
