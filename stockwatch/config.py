"""Application configuration using Pydantic settings.

Raw environment values are read once by ``Settings``; everything the monitor
core consumes is assembled from them by the pure functions below into a
validated ``MonitorConfig``.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from stockwatch.ingest.filters import FilterConfig, ModelFilter


class ConfigurationError(ValueError):
    """Raised at startup for unknown targets, malformed entries or missing values."""


class Settings(BaseSettings):
    """Application settings."""

    # App Settings
    log_level: str = "INFO"
    log_dir: str = "."
    app_host: str = "0.0.0.0"
    app_port: int = 8001

    # Catalog
    catalog_path: str = "catalog.json"
    # name[:min_sleep_ms[:max_sleep_ms]] entries, comma or newline separated
    stores: str = ""

    # Page timing (milliseconds, unset means "use default")
    page_sleep_min: Optional[int] = None
    page_sleep_max: Optional[int] = None
    page_backoff_min: Optional[int] = None
    page_backoff_max: Optional[int] = None
    page_timeout: int = 30000
    concurrency_limit: int = 1

    # Filters
    show_only_brands: str = ""
    show_only_series: str = ""
    show_only_models: str = ""  # name[:series] entries
    max_price_series: dict[str, float] = {}

    # Alerting policy
    renotify_interval: Optional[float] = None  # seconds, required; 0 disables
    renotify_on_price_drop: bool = False
    log_restock_ended: bool = True
    blocked_alert_streak: int = 5
    captcha_alerts: bool = True
    captcha_disable_after: int = 0
    channel_timeout: float = 15.0
    operator_channels: str = ""
    # channel name -> series allow-list
    channel_series: dict[str, list[str]] = {}
    # channel name -> series -> recipients (replaces the channel default)
    notify_group_series: dict[str, dict[str, list[str]]] = {}

    # Proxies
    proxy_dir: str = "."
    proxy_max_consecutive_blocks: int = 3
    proxy_cooldown_seconds: int = 1200

    # ==========================================================================
    # Notification channels
    # ==========================================================================
    discord_web_hook: str = ""
    discord_notify_group: str = ""

    slack_token: str = ""
    slack_channel: str = ""

    telegram_access_token: str = ""
    telegram_chat_id: str = ""

    webhook_urls: str = ""

    pushover_token: str = ""
    pushover_user: str = ""
    pushover_priority: int = 0
    pushover_retry: int = 0
    pushover_expire: int = 0

    pushbullet: str = ""

    pagerduty_integration_key: str = ""
    pagerduty_severity: str = "info"

    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    twilio_to_number: str = ""

    email_username: str = ""
    email_password: str = ""
    email_to: str = ""
    smtp_address: str = ""
    smtp_port: int = 25

    phone_number: str = ""
    phone_carrier: str = ""

    philips_hue_lan_bridge_ip: str = ""
    philips_hue_api_key: str = ""
    philips_hue_light_ids: str = ""
    philips_hue_light_color: str = ""
    philips_hue_light_pattern: str = ""

    redis_url: str = ""
    redis_channel: str = "stockwatch:alerts"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Defaults in milliseconds
DEFAULT_SLEEP_MIN_MS = 5000
DEFAULT_SLEEP_MAX_MS = 10000
DEFAULT_BACKOFF_MIN_MS = 10000
DEFAULT_BACKOFF_MAX_MS = 3600000


@dataclass(frozen=True)
class TargetConfig:
    """Timing, concurrency and proxy policy for one target (seconds)."""

    name: str
    min_delay: float
    max_delay: float
    min_backoff: float
    max_backoff: float
    timeout: float
    concurrency_limit: int = 1
    proxies: tuple[str, ...] = ()


@dataclass(frozen=True)
class MonitorConfig:
    """Validated configuration the monitor core is built from."""

    defaults: TargetConfig
    store_sleeps: dict[str, tuple[float, float]]
    filters: FilterConfig
    renotify_interval: float
    renotify_on_price_drop: bool = False
    log_restock_ended: bool = True
    blocked_alert_streak: int = 5
    captcha_alerts: bool = True
    captcha_disable_after: int = 0
    channel_timeout: float = 15.0
    operator_channels: tuple[str, ...] = ()
    proxy_max_consecutive_blocks: int = 3
    proxy_cooldown_seconds: float = 1200.0
    stores: tuple[str, ...] = field(default=())

    def target_config(
        self,
        name: str,
        proxies: Optional[list[str]] = None,
        overrides: Optional[dict[str, Any]] = None,
    ) -> TargetConfig:
        """Resolve a target's config: defaults, then STORES sleeps, then catalog overrides."""
        config = replace(self.defaults, name=name, proxies=tuple(proxies or ()))
        if name in self.store_sleeps:
            min_delay, max_delay = self.store_sleeps[name]
            config = replace(config, min_delay=min_delay, max_delay=max_delay)
        if overrides:
            config = merge_target_overrides(config, overrides)
        return config


def parse_list(value: Optional[str]) -> list[str]:
    """Split a comma or newline separated value, dropping blanks."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    separator = "\n" if "\n" in value else ","
    return [part.strip() for part in value.split(separator) if part.strip()]


def normalize_min(
    env_min: Optional[float], env_max: Optional[float], default: float
) -> float:
    """
    Minimum of a min/max pair, tolerating operator mistakes.

    Swapped values are reordered; a lone max below the default minimum
    pulls the minimum down to it.
    """
    if env_min is not None and env_max is not None:
        return min(env_min, env_max)
    if env_max is not None:
        return env_max if env_max < default else default
    if env_min is not None:
        return env_min
    return default


def normalize_max(
    env_min: Optional[float], env_max: Optional[float], default: float
) -> float:
    """
    Maximum of a min/max pair, tolerating operator mistakes.

    Swapped values are reordered; a lone min above the default maximum
    pushes the maximum up to it.
    """
    if env_min is not None and env_max is not None:
        return max(env_min, env_max)
    if env_min is not None:
        return env_min if env_min > default else default
    if env_max is not None:
        return env_max
    return default


def _parse_number(raw: str, what: str) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid number for {what}: {raw!r}") from None
    if value < 0:
        raise ConfigurationError(f"Negative value for {what}: {raw!r}")
    return value


def parse_store_entry(
    entry: str, default_min_ms: float, default_max_ms: float
) -> tuple[str, float, float]:
    """
    Parse a ``name[:min_ms[:max_ms]]`` STORES entry.

    Returns:
        (name, min_sleep_ms, max_sleep_ms)
    """
    parts = [p.strip() for p in entry.split(":")]
    if not parts[0] or len(parts) > 3:
        raise ConfigurationError(f"Malformed store entry: {entry!r}")

    name = parts[0].lower()
    env_min = _parse_number(parts[1], f"{name} min sleep") if len(parts) > 1 and parts[1] else None
    env_max = _parse_number(parts[2], f"{name} max sleep") if len(parts) > 2 and parts[2] else None

    return (
        name,
        normalize_min(env_min, env_max, default_min_ms),
        normalize_max(env_min, env_max, default_max_ms),
    )


def parse_model_entry(entry: str) -> ModelFilter:
    """Parse a ``name[:series]`` SHOW_ONLY_MODELS entry."""
    parts = [p.strip() for p in entry.split(":")]
    if not parts[0] or len(parts) > 2:
        raise ConfigurationError(f"Malformed model filter entry: {entry!r}")
    return ModelFilter(name=parts[0], series=parts[1] if len(parts) > 1 else "")


def merge_target_overrides(config: TargetConfig, overrides: dict[str, Any]) -> TargetConfig:
    """Apply catalog-file overrides (milliseconds) to a target config."""
    mapping = {
        "min_delay_ms": "min_delay",
        "max_delay_ms": "max_delay",
        "min_backoff_ms": "min_backoff",
        "max_backoff_ms": "max_backoff",
        "timeout_ms": "timeout",
    }
    changes: dict[str, Any] = {}
    for key, value in overrides.items():
        if key in mapping:
            changes[mapping[key]] = _parse_number(value, f"{config.name}.{key}") / 1000
        elif key == "concurrency_limit":
            try:
                limit = int(value)
            except (TypeError, ValueError):
                raise ConfigurationError(f"{config.name}: invalid concurrency_limit {value!r}") from None
            if limit < 1:
                raise ConfigurationError(f"{config.name}: concurrency_limit must be >= 1")
            changes["concurrency_limit"] = limit
        else:
            raise ConfigurationError(f"{config.name}: unknown target option {key!r}")

    merged = replace(config, **changes)
    if merged.min_delay > merged.max_delay:
        merged = replace(merged, min_delay=merged.max_delay, max_delay=merged.min_delay)
    if merged.min_backoff > merged.max_backoff:
        merged = replace(merged, min_backoff=merged.max_backoff, max_backoff=merged.min_backoff)
    return merged


def build_monitor_config(settings: Settings) -> MonitorConfig:
    """
    Assemble the validated monitor configuration from raw settings.

    Raises:
        ConfigurationError: If a required value is missing or an entry is malformed
    """
    if settings.renotify_interval is None:
        raise ConfigurationError(
            "RENOTIFY_INTERVAL must be set explicitly (seconds, 0 disables re-notification)"
        )
    if settings.renotify_interval < 0:
        raise ConfigurationError("RENOTIFY_INTERVAL must not be negative")
    if settings.concurrency_limit < 1:
        raise ConfigurationError("CONCURRENCY_LIMIT must be >= 1")

    sleep_min = normalize_min(settings.page_sleep_min, settings.page_sleep_max, DEFAULT_SLEEP_MIN_MS)
    sleep_max = normalize_max(settings.page_sleep_min, settings.page_sleep_max, DEFAULT_SLEEP_MAX_MS)
    backoff_min = normalize_min(settings.page_backoff_min, settings.page_backoff_max, DEFAULT_BACKOFF_MIN_MS)
    backoff_max = normalize_max(settings.page_backoff_min, settings.page_backoff_max, DEFAULT_BACKOFF_MAX_MS)

    defaults = TargetConfig(
        name="",
        min_delay=sleep_min / 1000,
        max_delay=sleep_max / 1000,
        min_backoff=backoff_min / 1000,
        max_backoff=backoff_max / 1000,
        timeout=settings.page_timeout / 1000,
        concurrency_limit=settings.concurrency_limit,
    )

    store_sleeps: dict[str, tuple[float, float]] = {}
    for entry in parse_list(settings.stores):
        name, min_ms, max_ms = parse_store_entry(entry, sleep_min, sleep_max)
        store_sleeps[name] = (min_ms / 1000, max_ms / 1000)

    for series, ceiling in settings.max_price_series.items():
        if ceiling < 0:
            raise ConfigurationError(f"Negative price ceiling for series {series!r}")

    filters = FilterConfig(
        brands=parse_list(settings.show_only_brands),
        series=parse_list(settings.show_only_series),
        models=[parse_model_entry(e) for e in parse_list(settings.show_only_models)],
        max_price_series=dict(settings.max_price_series),
    )

    return MonitorConfig(
        defaults=defaults,
        store_sleeps=store_sleeps,
        filters=filters,
        renotify_interval=float(settings.renotify_interval),
        renotify_on_price_drop=settings.renotify_on_price_drop,
        log_restock_ended=settings.log_restock_ended,
        blocked_alert_streak=settings.blocked_alert_streak,
        captcha_alerts=settings.captcha_alerts,
        captcha_disable_after=settings.captcha_disable_after,
        channel_timeout=settings.channel_timeout,
        operator_channels=tuple(parse_list(settings.operator_channels)),
        proxy_max_consecutive_blocks=settings.proxy_max_consecutive_blocks,
        proxy_cooldown_seconds=float(settings.proxy_cooldown_seconds),
        stores=tuple(store_sleeps),
    )


settings = Settings()
