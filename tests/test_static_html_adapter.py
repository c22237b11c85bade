"""Tests for the static HTML adapter and adapter registry."""

from decimal import Decimal

import httpx
import pytest

from stockwatch.config import ConfigurationError
from stockwatch.ingest.adapters.static_html import StaticHTMLAdapter, parse_price
from stockwatch.ingest.base import CaptchaPage, HttpBlocked, NetworkFailure, ParseAmbiguous
from stockwatch.ingest.proxy_manager import ProxyInfo
from stockwatch.ingest.registry import AdapterRegistry

IN_STOCK_PAGE = """
<html><body>
  <h1>GeForce RTX 3080</h1>
  <span class="price" content="699.99">$699.99</span>
  <button class="add-to-cart">Add to Cart</button>
</body></html>
"""

SOLD_OUT_PAGE = """
<html><body>
  <span class="price">$1,299.00</span>
  <button class="add-to-cart" disabled>Sold Out</button>
</body></html>
"""


@pytest.fixture
def adapter():
    return StaticHTMLAdapter(
        in_stock_selector="button.add-to-cart",
        out_of_stock_text=["sold out", "coming soon"],
        price_selector=".price",
    )


def test_parse_price():
    assert parse_price("$1,299.99") == Decimal("1299.99")
    assert parse_price("Now 849 USD") == Decimal("849")
    assert parse_price("call for price") is None
    assert parse_price("") is None


def test_in_stock_page(adapter):
    data = adapter.extract(IN_STOCK_PAGE)
    assert data.in_stock
    assert data.price == Decimal("699.99")


def test_out_of_stock_marker_wins_over_in_stock_selector(adapter):
    data = adapter.extract(SOLD_OUT_PAGE)
    assert not data.in_stock
    assert data.price == Decimal("1299.00")


def test_captcha_page(adapter):
    with pytest.raises(CaptchaPage):
        adapter.extract("<html><body>Robot Check: enter the characters you see</body></html>")


def test_captcha_title(adapter):
    page = "<html><head><title>Robot Check</title></head><body><form></form></body></html>"
    with pytest.raises(CaptchaPage):
        adapter.extract(page)


def test_product_page_with_recaptcha_widget_is_in_stock(adapter):
    page = """
    <html><head>
      <script src="https://www.google.com/recaptcha/api.js"></script>
      <script>var botNotice = "unusual traffic from your network";</script>
    </head><body>
      <span class="price">$699.99</span>
      <button class="add-to-cart">Add to Cart</button>
      <form class="newsletter"><div class="g-recaptcha" data-sitekey="abc"></div></form>
    </body></html>
    """
    data = adapter.extract(page)
    assert data.in_stock
    assert data.price == Decimal("699.99")


def test_challenge_widget_without_stock_marker(adapter):
    page = '<html><body><div class="h-captcha" data-sitekey="abc"></div></body></html>'
    with pytest.raises(CaptchaPage):
        adapter.extract(page)


def test_marker_inside_script_is_ignored():
    adapter = StaticHTMLAdapter(in_stock_text="add to cart")
    page = '<html><body><script>label = "Add to cart";</script><p>Check back later</p></body></html>'
    with pytest.raises(ParseAmbiguous):
        adapter.extract(page)


def test_ambiguous_page(adapter):
    with pytest.raises(ParseAmbiguous):
        adapter.extract("<html><body><p>Nothing to see</p></body></html>")


def test_text_selector_limits_marker_search():
    adapter = StaticHTMLAdapter(in_stock_text="in stock", text_selector="#availability")
    page = '<html><body><div id="availability">In Stock</div><p>sold out elsewhere</p></body></html>'
    assert adapter.extract(page).in_stock
    with pytest.raises(ParseAmbiguous):
        adapter.extract('<html><body><div id="availability">Check back</div>in stock</body></html>')


def test_requires_some_marker():
    with pytest.raises(ValueError):
        StaticHTMLAdapter(price_selector=".price")


def client_factory(responder):
    proxies = []

    def build(proxy):
        proxies.append(proxy)
        return httpx.AsyncClient(transport=httpx.MockTransport(responder))

    return build, proxies


@pytest.mark.asyncio
async def test_fetch_and_extract(adapter):
    build, _ = client_factory(lambda request: httpx.Response(200, text=IN_STOCK_PAGE))
    adapter._client_factory = build

    data = await adapter.fetch_and_extract("https://shop.example/gpu-1", timeout=5.0)

    assert data.in_stock
    await adapter.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [403, 429, 503])
async def test_blocked_statuses(status):
    build, _ = client_factory(lambda request: httpx.Response(status, text="denied"))
    adapter = StaticHTMLAdapter(in_stock_text="add to cart", client_factory=build)

    with pytest.raises(HttpBlocked) as exc_info:
        await adapter.fetch_and_extract("https://shop.example/gpu-1")
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_blocked_redirect_url():
    build, _ = client_factory(lambda request: httpx.Response(200, text="ok"))
    adapter = StaticHTMLAdapter(in_stock_text="add to cart", client_factory=build)

    with pytest.raises(HttpBlocked):
        await adapter.fetch_and_extract("https://shop.example/blocked?from=gpu")


@pytest.mark.asyncio
async def test_server_error_is_network_failure():
    build, _ = client_factory(lambda request: httpx.Response(500))
    adapter = StaticHTMLAdapter(in_stock_text="add to cart", client_factory=build)

    with pytest.raises(NetworkFailure):
        await adapter.fetch_and_extract("https://shop.example/gpu-1")


@pytest.mark.asyncio
async def test_transport_error_is_network_failure():
    def responder(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    build, _ = client_factory(responder)
    adapter = StaticHTMLAdapter(in_stock_text="add to cart", client_factory=build)

    with pytest.raises(NetworkFailure):
        await adapter.fetch_and_extract("https://shop.example/gpu-1")


@pytest.mark.asyncio
async def test_one_client_per_proxy():
    build, proxies = client_factory(lambda request: httpx.Response(200, text="Add to cart"))
    adapter = StaticHTMLAdapter(in_stock_text="add to cart", client_factory=build)
    first, second = ProxyInfo.parse("10.0.0.1:8080"), ProxyInfo.parse("10.0.0.2:8080")

    for proxy in (first, second, first, None, None):
        await adapter.fetch_and_extract("https://shop.example/gpu-1", proxy=proxy)

    assert proxies == [first, second, None]
    await adapter.close()


class TestRegistry:
    def test_default_registry_builds_static_html(self):
        registry = AdapterRegistry.default()
        adapter = registry.create("static_html", {"in_stock_text": "add to cart"})
        assert isinstance(adapter, StaticHTMLAdapter)
        assert registry.list_adapters() == ["static_html"]

    def test_unknown_adapter(self):
        with pytest.raises(ConfigurationError, match="Unknown adapter"):
            AdapterRegistry.default().create("headless")

    def test_invalid_options(self):
        registry = AdapterRegistry.default()
        with pytest.raises(ConfigurationError):
            registry.create("static_html", {"no_such_option": True})
        with pytest.raises(ConfigurationError):
            registry.create("static_html", {})
