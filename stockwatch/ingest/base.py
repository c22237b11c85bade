"""Base adapter interface and the normalized check result."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from stockwatch.ingest.proxy_manager import ProxyInfo


class AdapterError(RuntimeError):
    """Base class for errors an adapter reports to the checker."""
    pass


class NetworkFailure(AdapterError):
    """Raised on transport errors (connect, read, DNS)."""
    pass


class HttpBlocked(AdapterError):
    """Raised when the site rejects the request (403, 429, 503...)."""

    def __init__(self, status_code: int, message: str = ""):
        super().__init__(message or f"HTTP {status_code}")
        self.status_code = status_code


class CaptchaPage(AdapterError):
    """Raised when the fetched page is a CAPTCHA or bot challenge."""
    pass


class ParseAmbiguous(AdapterError):
    """Raised when the page cannot be classified as in or out of stock."""
    pass


@dataclass
class RawStockData:
    """Raw availability data extracted by an adapter."""

    in_stock: bool
    price: Optional[Decimal] = None


class Outcome(str, Enum):
    """Outcome of a single stock check."""
    SUCCESS = "success"
    TRANSIENT_ERROR = "transient_error"
    BLOCKED = "blocked"
    CAPTCHA_DETECTED = "captcha_detected"


@dataclass(frozen=True)
class Observation:
    """Normalized result of one check. Transient, never persisted."""

    timestamp: float
    outcome: Outcome
    in_stock: bool = False
    price: Optional[Decimal] = None
    passes_filters: bool = False
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS


class BaseAdapter(ABC):
    """Abstract base class for per-site scraping adapters."""

    @abstractmethod
    async def fetch_and_extract(
        self,
        url: str,
        proxy: Optional[ProxyInfo] = None,
        timeout: Optional[float] = None,
    ) -> RawStockData:
        """
        Fetch a product page and extract its availability.

        Args:
            url: Product URL
            proxy: Optional proxy to route the request through
            timeout: Request timeout in seconds

        Returns:
            RawStockData with stock and price information

        Raises:
            NetworkFailure, HttpBlocked, CaptchaPage, ParseAmbiguous
        """
        pass

    async def close(self) -> None:
        """Release any held connections."""
        return None
