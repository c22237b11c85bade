"""Static HTML adapter for server-rendered product pages."""

import logging
import random
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, List, Optional, Union

import httpx
from selectolax.lexbor import LexborHTMLParser

from stockwatch.ingest.base import (
    BaseAdapter,
    CaptchaPage,
    HttpBlocked,
    NetworkFailure,
    ParseAmbiguous,
    RawStockData,
)
from stockwatch.ingest.proxy_manager import ProxyInfo

logger = logging.getLogger(__name__)

# User agents for rotation
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
]

DEFAULT_BLOCKED_STATUSES = (403, 429, 503)

# Phrases a CAPTCHA or bot-challenge page shows the visitor; matched against
# the page title and visible body text
CAPTCHA_PATTERNS = [
    r"enter the characters",
    r"prove you'?re not a robot",
    r"verify you are a human",
    r"robot check",
    r"unusual traffic",
    r"pardon our interruption",
    r"checking your browser",
]

# Challenge widget markup. Product pages embed these in login and newsletter
# forms too, so they only count when no stock marker matched.
CAPTCHA_MARKUP_PATTERNS = [
    r"g-recaptcha",
    r"h-captcha",
    r"captcha-delivery",
]

NON_VISIBLE_TAGS = ["script", "style", "noscript", "template"]

_PRICE_NUMBER = re.compile(r"\d[\d,]*(?:\.\d+)?")


def parse_selectors(selector_input: Union[str, List[str], None]) -> List[str]:
    """Split a selector option into individual selectors."""
    if not selector_input:
        return []
    if isinstance(selector_input, list):
        return [s.strip() for s in selector_input if s and s.strip()]
    return [s.strip() for s in selector_input.split(",") if s.strip()]


def parse_markers(marker_input: Union[str, List[str], None]) -> List[str]:
    """Text markers are matched case-insensitively."""
    if not marker_input:
        return []
    if isinstance(marker_input, str):
        marker_input = [marker_input]
    return [m.strip().lower() for m in marker_input if m and m.strip()]


def parse_price(price_text: str) -> Optional[Decimal]:
    """Parse the first number in a price string ("$1,299.99" -> 1299.99)."""
    if not price_text:
        return None
    match = _PRICE_NUMBER.search(price_text)
    if not match:
        return None
    try:
        return Decimal(match.group().replace(",", ""))
    except InvalidOperation as exc:
        logger.debug("Failed to parse price: %s", price_text, exc_info=exc)
        return None


class StaticHTMLAdapter(BaseAdapter):
    """
    Adapter for pages whose availability is present in the initial HTML.

    Stock state is read from CSS selectors and/or text markers. Out-of-stock
    markers take precedence over in-stock markers; a page matching neither
    is reported as ambiguous.
    """

    def __init__(
        self,
        in_stock_selector: Union[str, List[str], None] = None,
        out_of_stock_selector: Union[str, List[str], None] = None,
        in_stock_text: Union[str, List[str], None] = None,
        out_of_stock_text: Union[str, List[str], None] = None,
        text_selector: Optional[str] = None,
        price_selector: Union[str, List[str], None] = None,
        blocked_statuses: Optional[List[int]] = None,
        captcha_patterns: Optional[List[str]] = None,
        headers: Optional[dict[str, str]] = None,
        client_factory: Optional[Callable[[Optional[ProxyInfo]], httpx.AsyncClient]] = None,
    ):
        """
        Args:
            in_stock_selector: CSS selector(s) present only when purchasable
            out_of_stock_selector: CSS selector(s) present only when sold out
            in_stock_text: Text marker(s) meaning in stock (e.g. "add to cart")
            out_of_stock_text: Text marker(s) meaning sold out
            text_selector: Element whose text is searched for markers (whole body if unset)
            price_selector: CSS selector(s) for the price element
            blocked_statuses: HTTP statuses treated as blocked
            captcha_patterns: Extra challenge phrases matched against visible text
            headers: Extra request headers
            client_factory: Builds the HTTP client for a proxy (or None)
        """
        self.in_stock_selectors = parse_selectors(in_stock_selector)
        self.out_of_stock_selectors = parse_selectors(out_of_stock_selector)
        self.in_stock_markers = parse_markers(in_stock_text)
        self.out_of_stock_markers = parse_markers(out_of_stock_text)
        self.text_selector = text_selector
        self.price_selectors = parse_selectors(price_selector)
        self.blocked_statuses = tuple(blocked_statuses or DEFAULT_BLOCKED_STATUSES)
        self.headers = dict(headers or {})

        if not (
            self.in_stock_selectors
            or self.out_of_stock_selectors
            or self.in_stock_markers
            or self.out_of_stock_markers
        ):
            raise ValueError("at least one in-stock or out-of-stock selector/text marker is required")

        self._captcha_patterns = [
            re.compile(pattern, re.IGNORECASE)
            for pattern in CAPTCHA_PATTERNS + list(captcha_patterns or [])
        ]
        self._captcha_markup_patterns = [
            re.compile(pattern, re.IGNORECASE) for pattern in CAPTCHA_MARKUP_PATTERNS
        ]
        self._client_factory = client_factory or self._build_client
        self._http_clients: dict[str, httpx.AsyncClient] = {}  # proxy url -> client
        self._default_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_options(cls, options: dict[str, Any]) -> "StaticHTMLAdapter":
        """Build from a catalog target's ``options`` mapping."""
        return cls(**options)

    def _build_client(self, proxy: Optional[ProxyInfo]) -> httpx.AsyncClient:
        headers = {
            "User-Agent": random.choice(USER_AGENTS),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
            "Accept-Encoding": "gzip, deflate, br",
            "Connection": "keep-alive",
            "Upgrade-Insecure-Requests": "1",
        }
        headers.update(self.headers)
        if proxy:
            logger.debug(f"Creating HTTP client with proxy {proxy.display}")
            return httpx.AsyncClient(
                timeout=30.0, follow_redirects=True, headers=headers, proxy=proxy.url
            )
        return httpx.AsyncClient(timeout=30.0, follow_redirects=True, headers=headers)

    def _get_client(self, proxy: Optional[ProxyInfo] = None) -> httpx.AsyncClient:
        if proxy:
            if proxy.url not in self._http_clients:
                self._http_clients[proxy.url] = self._client_factory(proxy)
            return self._http_clients[proxy.url]

        if self._default_client is None:
            self._default_client = self._client_factory(None)
        return self._default_client

    async def fetch_and_extract(
        self,
        url: str,
        proxy: Optional[ProxyInfo] = None,
        timeout: Optional[float] = None,
    ) -> RawStockData:
        client = self._get_client(proxy)
        kwargs = {"timeout": timeout} if timeout else {}
        try:
            response = await client.get(url, **kwargs)
        except httpx.TransportError as e:
            raise NetworkFailure(f"{type(e).__name__}: {e}") from e

        status = response.status_code
        if status in self.blocked_statuses or "/blocked" in str(response.url).lower():
            raise HttpBlocked(status, f"HTTP {status} for {url}")
        if not 200 <= status < 300:
            raise NetworkFailure(f"HTTP {status} for {url}")

        return self.extract(response.text)

    def _shows_challenge(self, parser: LexborHTMLParser) -> bool:
        title = parser.css_first("title")
        texts = [title.text(strip=True) if title is not None else ""]
        if parser.body is not None:
            texts.append(parser.body.text(separator=" ", strip=True))
        visible = " ".join(texts)
        return any(pattern.search(visible) for pattern in self._captcha_patterns)

    def _has_challenge_markup(self, html: str) -> bool:
        return any(pattern.search(html) for pattern in self._captcha_markup_patterns)

    def extract(self, html: str) -> RawStockData:
        """
        Classify a fetched page.

        Challenge phrases in the title or visible text always mean a CAPTCHA
        page. Challenge widget markup only does when the page has no stock
        marker, so a product page with a reCAPTCHA login form still parses.

        Raises:
            CaptchaPage: If the page is a bot challenge
            ParseAmbiguous: If no stock marker matched
        """
        parser = LexborHTMLParser(html)
        parser.strip_tags(NON_VISIBLE_TAGS)
        if self._shows_challenge(parser):
            raise CaptchaPage("challenge text found in page")

        price = self._extract_price(parser)

        if self._any_selector(parser, self.out_of_stock_selectors):
            return RawStockData(in_stock=False, price=price)

        text = self._marker_text(parser)
        if any(marker in text for marker in self.out_of_stock_markers):
            return RawStockData(in_stock=False, price=price)

        if self._any_selector(parser, self.in_stock_selectors):
            return RawStockData(in_stock=True, price=price)
        if any(marker in text for marker in self.in_stock_markers):
            return RawStockData(in_stock=True, price=price)

        if self._has_challenge_markup(html):
            raise CaptchaPage("challenge widget on a page with no stock marker")
        raise ParseAmbiguous("no in-stock or out-of-stock marker matched")

    @staticmethod
    def _any_selector(parser: LexborHTMLParser, selectors: List[str]) -> bool:
        for selector in selectors:
            if parser.css_first(selector) is not None:
                return True
        return False

    def _marker_text(self, parser: LexborHTMLParser) -> str:
        if not (self.in_stock_markers or self.out_of_stock_markers):
            return ""
        node = parser.css_first(self.text_selector) if self.text_selector else parser.body
        if node is None:
            return ""
        return node.text(separator=" ", strip=True).lower()

    def _extract_price(self, parser: LexborHTMLParser) -> Optional[Decimal]:
        for selector in self.price_selectors:
            elem = parser.css_first(selector)
            if elem is None:
                continue
            price = parse_price(elem.attributes.get("content") or elem.text(strip=True))
            if price is not None:
                return price
        return None

    async def close(self) -> None:
        """Close all HTTP clients."""
        for client in self._http_clients.values():
            await client.aclose()
        self._http_clients.clear()
        if self._default_client:
            await self._default_client.aclose()
            self._default_client = None
