"""Tests for configuration parsing and normalization."""

import pytest

from stockwatch.config import (
    ConfigurationError,
    Settings,
    TargetConfig,
    build_monitor_config,
    merge_target_overrides,
    normalize_max,
    normalize_min,
    parse_list,
    parse_model_entry,
    parse_store_entry,
)


def make_settings(**overrides) -> Settings:
    values = {"renotify_interval": 300}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_parse_list_comma_and_newline():
    assert parse_list("a, b,,c ") == ["a", "b", "c"]
    assert parse_list("a,b\nc") == ["a,b", "c"]
    assert parse_list("") == []
    assert parse_list(None) == []


class TestNormalize:
    def test_defaults_when_unset(self):
        assert normalize_min(None, None, 5000) == 5000
        assert normalize_max(None, None, 10000) == 10000

    def test_swapped_values_are_reordered(self):
        assert normalize_min(9000, 2000, 5000) == 2000
        assert normalize_max(9000, 2000, 10000) == 9000

    def test_lone_max_below_default_min_pulls_min_down(self):
        assert normalize_min(None, 3000, 5000) == 3000
        assert normalize_min(None, 8000, 5000) == 5000

    def test_lone_min_above_default_max_pushes_max_up(self):
        assert normalize_max(20000, None, 10000) == 20000
        assert normalize_max(7000, None, 10000) == 10000


class TestStoreEntries:
    def test_name_only_uses_defaults(self):
        assert parse_store_entry("BestBuy", 5000, 10000) == ("bestbuy", 5000, 10000)

    def test_min_and_max(self):
        assert parse_store_entry("newegg:1000:2000", 5000, 10000) == ("newegg", 1000, 2000)

    def test_min_only_above_default_max(self):
        assert parse_store_entry("amazon:15000", 5000, 10000) == ("amazon", 15000, 15000)

    @pytest.mark.parametrize("entry", ["", ":100", "a:1:2:3", "a:x"])
    def test_malformed(self, entry):
        with pytest.raises(ConfigurationError):
            parse_store_entry(entry, 5000, 10000)


def test_parse_model_entry():
    entry = parse_model_entry("founders edition:3080")
    assert entry.name == "founders edition"
    assert entry.series == "3080"
    assert parse_model_entry("tuf").series == ""

    with pytest.raises(ConfigurationError):
        parse_model_entry(":3080")


class TestTargetOverrides:
    base = TargetConfig(name="shop", min_delay=5, max_delay=10, min_backoff=10, max_backoff=3600, timeout=30)

    def test_milliseconds_converted(self):
        merged = merge_target_overrides(self.base, {"min_delay_ms": 2000, "timeout_ms": 15000})
        assert merged.min_delay == 2.0
        assert merged.timeout == 15.0
        assert merged.max_delay == 10

    def test_swapped_pair_reordered(self):
        merged = merge_target_overrides(self.base, {"min_backoff_ms": 60000, "max_backoff_ms": 1000})
        assert merged.min_backoff == 1.0
        assert merged.max_backoff == 60.0

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigurationError):
            merge_target_overrides(self.base, {"max_delay": 3})

    def test_concurrency_limit(self):
        assert merge_target_overrides(self.base, {"concurrency_limit": 3}).concurrency_limit == 3
        with pytest.raises(ConfigurationError):
            merge_target_overrides(self.base, {"concurrency_limit": 0})


class TestBuildMonitorConfig:
    def test_renotify_interval_required(self):
        with pytest.raises(ConfigurationError):
            build_monitor_config(Settings(_env_file=None, renotify_interval=None))

    def test_negative_renotify_interval_rejected(self):
        with pytest.raises(ConfigurationError):
            build_monitor_config(make_settings(renotify_interval=-1))

    def test_defaults_in_seconds(self):
        config = build_monitor_config(make_settings())
        assert config.defaults.min_delay == 5.0
        assert config.defaults.max_delay == 10.0
        assert config.defaults.min_backoff == 10.0
        assert config.defaults.max_backoff == 3600.0
        assert config.defaults.timeout == 30.0
        assert config.defaults.concurrency_limit == 1
        assert config.renotify_interval == 300.0

    def test_swapped_page_sleep(self):
        config = build_monitor_config(make_settings(page_sleep_min=9000, page_sleep_max=3000))
        assert config.defaults.min_delay == 3.0
        assert config.defaults.max_delay == 9.0

    def test_stores_and_filters(self):
        config = build_monitor_config(make_settings(
            stores="bestbuy:1000:2000,newegg",
            show_only_brands="nvidia, amd",
            show_only_models="founders edition:3080",
            max_price_series={"3080": 799.0},
        ))
        assert config.stores == ("bestbuy", "newegg")
        assert config.store_sleeps["bestbuy"] == (1.0, 2.0)
        assert config.store_sleeps["newegg"] == (5.0, 10.0)
        assert config.filters.brands == ["nvidia", "amd"]
        assert config.filters.models[0].series == "3080"
        assert config.filters.max_price_series == {"3080": 799.0}

    def test_target_config_layers(self):
        config = build_monitor_config(make_settings(stores="bestbuy:1000:2000"))
        target = config.target_config("bestbuy", proxies=["p1:8080"], overrides={"timeout_ms": 5000})
        assert target.name == "bestbuy"
        assert (target.min_delay, target.max_delay) == (1.0, 2.0)
        assert target.timeout == 5.0
        assert target.proxies == ("p1:8080",)

    def test_negative_price_ceiling_rejected(self):
        with pytest.raises(ConfigurationError):
            build_monitor_config(make_settings(max_price_series={"3080": -1}))

    def test_operator_channels(self):
        config = build_monitor_config(make_settings(operator_channels="discord,email"))
        assert config.operator_channels == ("discord", "email")
