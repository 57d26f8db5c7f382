"""
Tests for upkeep_config -- YAML loading, per-kind defaults and validation.
"""

from decimal import Decimal

import pytest
import yaml

from upkeep_config import CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH, get_active_config
from upkeep_config.loader import (
    load_config,
    parse_keeper_config,
    parse_manager,
    parse_watchdog,
)
from upkeep_config.schema import KeeperConfig


def _write(tmp_path, data) -> str:
    path = tmp_path / "keeper.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


MINIMAL = {
    "database_url": "sqlite://",
    "watchdogs": [{"name": "w", "owner": "ops"}],
    "managers": [
        {"name": "prices", "kind": "token", "owner": "ops", "watchdog": "w"},
    ],
}


class TestPackagedDefaults:
    def test_defaults_file(self, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)

        config = get_active_config()

        assert [m.name for m in config.managers] == ["gauges", "redistribute", "tokens"]
        assert config.watchdog("main").initial_deposit == Decimal("100")
        assert config.manager("gauges").fund_amount == Decimal("0.1")
        assert config.manager("tokens").interval_seconds == 3600
        assert config.scheduler.forwarder == "keeper"
        assert config.registry.finality_delay_seconds == 600

    def test_default_path_points_into_package(self):
        assert DEFAULT_CONFIG_PATH.name == "defaults.yaml"
        assert DEFAULT_CONFIG_PATH.exists()


class TestSelection:
    def test_explicit_path(self, tmp_path):
        config = get_active_config(_write(tmp_path, MINIMAL))
        assert config.database_url == "sqlite://"

    def test_environment_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_PATH_ENV, _write(tmp_path, MINIMAL))
        assert [m.name for m in get_active_config().managers] == ["prices"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_empty_file_yields_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == KeeperConfig()


class TestManagerParsing:
    def test_kind_defaults(self):
        token = parse_manager({"name": "t", "kind": "token", "owner": "o"})
        gauge = parse_manager({"name": "g", "kind": "gauge", "owner": "o"})

        assert (token.batch_size, token.interval_seconds) == (1, 3600)
        assert (gauge.batch_size, gauge.interval_seconds) == (5, 604800)

    def test_explicit_values_win(self):
        manager = parse_manager({
            "name": "r", "kind": "redistribute", "owner": "o",
            "batch_size": 10, "fund_amount": 0.25,
            "excluded_categories": ["xchain"], "forwarders": ["bot"],
        })

        assert manager.batch_size == 10
        assert manager.fund_amount == Decimal("0.25")
        assert manager.excluded_categories == ("xchain",)
        assert manager.forwarders == ("bot",)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"kind": "lottery"},
            {"batch_size": 0},
            {"batch_size": 11, "entities_per_job": 10},
            {"interval_seconds": 0},
        ],
    )
    def test_invalid_manager(self, overrides):
        data = {"name": "m", "kind": "gauge", "owner": "o", **overrides}
        with pytest.raises(ValueError):
            parse_manager(data)

    def test_missing_required_key(self):
        with pytest.raises(KeyError):
            parse_manager({"name": "m", "kind": "gauge"})


class TestRootParsing:
    def test_watchdog_values(self):
        watchdog = parse_watchdog({"name": "w", "owner": "o", "max_top_up_amount": 2.5})
        assert watchdog.max_top_up_amount == Decimal("2.5")
        assert watchdog.min_percentage == 120

    def test_duplicate_names(self):
        data = {
            "managers": [
                {"name": "m", "kind": "gauge", "owner": "o"},
                {"name": "m", "kind": "token", "owner": "o"},
            ],
        }
        with pytest.raises(ValueError, match="Duplicate manager"):
            parse_keeper_config(data)

    def test_unknown_watchdog_reference(self):
        data = {"managers": [{"name": "m", "kind": "gauge", "owner": "o", "watchdog": "nope"}]}
        with pytest.raises(ValueError, match="unknown watchdog"):
            parse_keeper_config(data)

    def test_lookup_errors(self):
        config = parse_keeper_config(MINIMAL)
        with pytest.raises(KeyError):
            config.manager("gauges")
        with pytest.raises(KeyError):
            config.watchdog("main")
