"""Tests for config loading, overrides and saving."""

from datetime import datetime, timezone

import pytest
import yaml

from chillhours.src.config import (
    check_timezone,
    chill_config,
    fetch_config,
    load_config,
    python_root,
    save_config,
    validate_config,
)


class TestLoadConfig:
    def test_defaults(self):
        cfg = load_config(environ={})
        assert cfg["chill"]["season_start"] == 9
        assert cfg["chill"]["min_temp_f"] == 32
        assert cfg["chill"]["max_temp_f"] == 45
        assert cfg["api"]["rate_limit_delay_ms"] == 1000
        assert cfg["api"]["api_key"] == ""
        assert cfg["fetch"]["page_size"] == 500
        assert cfg["fetch"]["max_fetches"] == 100

    def test_environment_overrides(self):
        cfg = load_config(
            environ={
                "AMBIENT_API_KEY": "abc",
                "AMBIENT_DEFAULT_STATION": "AA:BB",
                "AMBIENT_RATE_LIMIT_DELAY": "250",
            }
        )
        assert cfg["api"]["api_key"] == "abc"
        assert cfg["station"]["default_mac"] == "AA:BB"
        assert cfg["api"]["rate_limit_delay_ms"] == 250
        # untouched keys in the same section survive
        assert cfg["api"]["max_retries"] == 3

    def test_bad_environment_value(self):
        with pytest.raises(ValueError, match="AMBIENT_RATE_LIMIT_DELAY"):
            load_config(environ={"AMBIENT_RATE_LIMIT_DELAY": "soon"})

    def test_user_file_wins_over_environment(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("api:\n  api_key: from-file\nchill:\n  season_start: 10\n")
        cfg = load_config(path, environ={"AMBIENT_API_KEY": "from-env"})
        assert cfg["api"]["api_key"] == "from-file"
        assert cfg["chill"]["season_start"] == 10
        assert cfg["chill"]["max_temp_f"] == 45

    def test_missing_user_file_is_fine(self, tmp_path):
        cfg = load_config(tmp_path / "nope.yaml", environ={})
        assert cfg["chill"]["season_start"] == 9

    def test_invalid_user_file_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("chill:\n  season_start: 13\n")
        with pytest.raises(ValueError, match="season_start"):
            load_config(path, environ={})


class TestSaveConfig:
    def test_round_trip_creates_directory(self, tmp_path):
        cfg = load_config(environ={})
        cfg["api"]["api_key"] = "saved"
        path = tmp_path / "nested" / "config.yaml"
        save_config(cfg, path)
        assert yaml.safe_load(path.read_text())["api"]["api_key"] == "saved"
        assert load_config(path, environ={})["api"]["api_key"] == "saved"

    def test_refuses_inverted_range(self, tmp_path):
        cfg = load_config(environ={})
        cfg["chill"]["min_temp_f"] = 50
        with pytest.raises(ValueError, match="min_temp_f"):
            save_config(cfg, tmp_path / "config.yaml")
        assert not (tmp_path / "config.yaml").exists()

    def test_writes_only_given_layer(self, tmp_path):
        path = tmp_path / "config.yaml"
        save_config({"chill": {"season_start": 10}}, path)
        assert yaml.safe_load(path.read_text()) == {"chill": {"season_start": 10}}
        cfg = load_config(path, environ={"AMBIENT_API_KEY": "from-env"})
        assert cfg["chill"]["season_start"] == 10
        assert cfg["api"]["api_key"] == "from-env"

    def test_refuses_unknown_timezone(self, tmp_path):
        with pytest.raises(ValueError, match="timezone"):
            save_config({"station": {"timezone": "Not/AZone"}}, tmp_path / "config.yaml")
        assert not (tmp_path / "config.yaml").exists()


class TestValidateConfig:
    def test_negative_delay(self):
        cfg = load_config(environ={})
        cfg["api"]["rate_limit_delay_ms"] = -1
        with pytest.raises(ValueError):
            validate_config(cfg)

    def test_unknown_timezone_in_user_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("station:\n  timezone: Mars/Olympus\n")
        with pytest.raises(ValueError, match="timezone"):
            load_config(path, environ={})

    def test_unknown_timezone_in_environment(self):
        with pytest.raises(ValueError, match="Not/AZone"):
            load_config(environ={"AMBIENT_TIMEZONE": "Not/AZone"})

    def test_check_timezone(self):
        assert check_timezone("UTC") == "UTC"
        assert check_timezone("America/Chicago") == "America/Chicago"
        with pytest.raises(ValueError):
            check_timezone("Not/AZone")


class TestBuilders:
    def test_chill_config_timezone_precedence(self):
        cfg = load_config(environ={})
        assert chill_config(cfg).timezone == "UTC"
        cfg["station"]["timezone"] = "America/Chicago"
        assert chill_config(cfg).timezone == "America/Chicago"
        assert chill_config(cfg, timezone="Europe/Warsaw").timezone == "Europe/Warsaw"

    def test_chill_config_bounds(self):
        settings = chill_config(load_config(environ={}))
        assert (settings.min_temp_f, settings.max_temp_f) == (32.0, 45.0)
        assert settings.min_coverage_percent == 80

    def test_fetch_config(self):
        cfg = load_config(environ={"AMBIENT_RATE_LIMIT_DELAY": "10"})
        start = datetime(2023, 1, 1, tzinfo=timezone.utc)
        fc = fetch_config(cfg, "AA:BB", start, max_days=30)
        assert fc.device_id == "AA:BB"
        assert fc.start == start
        assert fc.end is None
        assert fc.max_days == 30
        assert fc.page_size == 500
        assert fc.max_fetches == 100
        assert fc.delay_ms == 10


class TestPaths:
    def test_python_root_has_config(self):
        assert (python_root() / "config.yaml").exists()
