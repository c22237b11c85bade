"""Tests for runtime assembly, configuration reload and the status API."""

import json

import pytest
from fastapi.testclient import TestClient

from stockwatch.config import ConfigurationError, Settings
from stockwatch.ingest.adapters.static_html import StaticHTMLAdapter
from stockwatch.main import app
from stockwatch.worker.runtime import build_runtime

LINK_3080 = {"brand": "nvidia", "series": "3080", "model": "founders edition", "url": "https://bestbuy.example/3080"}
LINK_3070 = {"brand": "nvidia", "series": "3070", "model": "founders edition", "url": "https://bestbuy.example/3070"}
LINK_TUF = {"brand": "asus", "series": "3080", "model": "tuf", "url": "https://newegg.example/tuf"}


def write_catalog(path, targets):
    path.write_text(json.dumps({"targets": targets}))


@pytest.fixture
def catalog_path(tmp_path):
    path = tmp_path / "catalog.json"
    write_catalog(path, [
        {"name": "bestbuy", "options": {"in_stock_text": "add to cart"}, "links": [LINK_3080, LINK_3070]},
        {"name": "newegg", "options": {"out_of_stock_text": "sold out"}, "links": [LINK_TUF]},
    ])
    (tmp_path / "newegg.proxies").write_text("10.0.0.1:8080\n10.0.0.2:8080\n")
    return path


@pytest.fixture
def make_settings(catalog_path, tmp_path):
    def _make(**overrides):
        values = {
            "renotify_interval": 0,
            "catalog_path": str(catalog_path),
            "proxy_dir": str(tmp_path),
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


def test_build_runtime(make_settings):
    runtime = build_runtime(make_settings(), channels=[])

    assert len(runtime.catalog) == 3
    assert isinstance(runtime.checker.adapter_for("bestbuy"), StaticHTMLAdapter)
    assert runtime.scheduler.proxy_pool("newegg").proxy_count == 2
    assert runtime.scheduler.proxy_pool("bestbuy") is None


def test_build_runtime_rejects_unknown_store(make_settings):
    with pytest.raises(ConfigurationError):
        build_runtime(make_settings(stores="walmart"), channels=[])


@pytest.mark.asyncio
async def test_reload_reuses_unchanged_adapters(make_settings, catalog_path):
    runtime = build_runtime(make_settings(), channels=[])
    bestbuy_adapter = runtime.checker.adapter_for("bestbuy")
    newegg_adapter = runtime.checker.adapter_for("newegg")

    write_catalog(catalog_path, [
        {"name": "bestbuy", "options": {"in_stock_text": "add to cart"}, "links": [LINK_3080]},
        {"name": "newegg", "options": {"out_of_stock_text": "out of stock"}, "links": [LINK_TUF]},
    ])
    result = await runtime.reload(make_settings())

    assert result == {"targets": 2, "links": 2}
    assert runtime.checker.adapter_for("bestbuy") is bestbuy_adapter
    assert runtime.checker.adapter_for("newegg") is not newegg_adapter
    assert runtime.catalog.find_link(("bestbuy", LINK_3070["url"])) is None
    await runtime.close()


@pytest.mark.asyncio
async def test_invalid_reload_keeps_running_config(make_settings):
    runtime = build_runtime(make_settings(), channels=[])

    with pytest.raises(ConfigurationError):
        await runtime.reload(make_settings(show_only_models=":3080"))

    assert len(runtime.catalog) == 3
    await runtime.close()


class TestStatusApi:
    @pytest.fixture
    def client(self, make_settings):
        app.state.runtime = build_runtime(make_settings(), channels=[])
        yield TestClient(app)
        app.state.runtime = None

    def test_health_before_start(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "starting"}

    def test_targets(self, client):
        response = client.get("/api/targets")
        assert response.status_code == 200

        targets = {t["name"]: t for t in response.json()["targets"]}
        assert targets["bestbuy"]["links"] == 2
        assert targets["bestbuy"]["min_delay"] == 5.0
        assert targets["newegg"]["proxies"] == {"total": 2, "in_cooldown": 0}

    def test_links_filtered_by_target(self, client):
        response = client.get("/api/links", params={"target": "newegg"})
        assert response.status_code == 200

        body = response.json()
        assert body["count"] == 1
        assert body["links"][0]["url"] == LINK_TUF["url"]
        assert body["links"][0]["running"] is False

    def test_reload_with_invalid_config_returns_400(self, client, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("RENOTIFY_INTERVAL", raising=False)

        response = client.post("/api/reload")

        assert response.status_code == 400
        assert "RENOTIFY_INTERVAL" in response.json()["detail"]


def test_api_unavailable_without_runtime():
    app.state.runtime = None
    client = TestClient(app)

    assert client.get("/api/targets").status_code == 503
    assert client.get("/health").json() == {"status": "starting"}
