"""Load, merge and save config.yaml, with AMBIENT_* environment overrides."""

import copy
import os
from datetime import datetime
from pathlib import Path

import pandas as pd
import yaml

from .chill_hours import ChillConfig
from .fetcher import FetchConfig

# env var -> (section, key, type)
ENV_OVERRIDES = {
    "AMBIENT_API_KEY": ("api", "api_key", str),
    "AMBIENT_APPLICATION_KEY": ("api", "application_key", str),
    "AMBIENT_DEFAULT_STATION": ("station", "default_mac", str),
    "AMBIENT_RATE_LIMIT_DELAY": ("api", "rate_limit_delay_ms", int),
    "AMBIENT_TIMEZONE": ("station", "timezone", str),
}


def python_root() -> Path:
    """Return the chillhours package directory (holds the shipped config.yaml)."""
    return Path(__file__).parent.parent


def user_config_path() -> Path:
    """Return the per-user config file location."""
    return Path.home() / ".ambient-chill-hours" / "config.yaml"


def _merge(base: dict, override: dict) -> dict:
    """Merge override into a copy of base, one level of sections deep."""
    merged = copy.deepcopy(base)
    for section, values in (override or {}).items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section] = {**merged[section], **values}
        else:
            merged[section] = values
    return merged


def _env_overrides(environ) -> dict:
    overrides: dict = {}
    for var, (section, key, cast) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw in (None, ""):
            continue
        try:
            value = cast(raw)
        except ValueError as e:
            raise ValueError(f"{var}={raw!r} is not a valid {cast.__name__}") from e
        overrides.setdefault(section, {})[key] = value
    return overrides


def load_defaults(defaults_path: Path | None = None) -> dict:
    """Load the shipped config.yaml."""
    if defaults_path is None:
        defaults_path = python_root() / "config.yaml"
    with open(defaults_path) as f:
        return yaml.safe_load(f)


def load_user_config(path: Path | None) -> dict:
    """Load only the user file's own settings ({} when there is none)."""
    if path is None or not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_config(
    user_path: Path | None = None,
    defaults_path: Path | None = None,
    environ=None,
) -> dict:
    """Load shipped defaults, apply environment overrides, then the user file.

    A missing user file is not an error; the defaults and environment stand.
    """
    if environ is None:
        environ = os.environ

    cfg = _merge(load_defaults(defaults_path), _env_overrides(environ))
    cfg = _merge(cfg, load_user_config(user_path))
    validate_config(cfg)
    return cfg


def save_config(user_cfg: dict, path: Path, defaults_path: Path | None = None) -> None:
    """Write the user layer as YAML, creating the parent directory.

    Only the given settings are written, so environment values and shipped
    defaults stay out of the file. The layer is validated on top of the defaults.
    """
    validate_config(_merge(load_defaults(defaults_path), user_cfg))
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(user_cfg, f, sort_keys=False)


def check_timezone(name: str) -> str:
    """Return name if it is a known IANA zone, else raise ValueError."""
    try:
        pd.Timestamp.now(tz=name)
    except (KeyError, ValueError, TypeError) as e:
        raise ValueError(f"unknown timezone {name!r}") from e
    return name


def validate_config(cfg: dict) -> None:
    """Raise ValueError for settings the components cannot work with."""
    chill = cfg["chill"]
    if not 1 <= int(chill["season_start"]) <= 12:
        raise ValueError(f"season_start must be a month 1-12, got {chill['season_start']}")
    if float(chill["min_temp_f"]) > float(chill["max_temp_f"]):
        raise ValueError(
            f"min_temp_f ({chill['min_temp_f']}) is above max_temp_f ({chill['max_temp_f']})"
        )
    if int(cfg["api"]["rate_limit_delay_ms"]) < 0:
        raise ValueError("rate_limit_delay_ms must not be negative")
    tz = cfg["station"].get("timezone")
    if tz:
        check_timezone(tz)


def chill_config(cfg: dict, timezone: str | None = None) -> ChillConfig:
    """Build the aggregator settings; an explicit timezone wins over config."""
    chill = cfg["chill"]
    return ChillConfig(
        min_temp_f=float(chill["min_temp_f"]),
        max_temp_f=float(chill["max_temp_f"]),
        timezone=timezone or cfg["station"].get("timezone") or "UTC",
        min_coverage_percent=int(chill.get("min_coverage_percent", 80)),
    )


def fetch_config(
    cfg: dict,
    device_id: str,
    start: datetime,
    end: datetime | None = None,
    max_days: int | None = None,
) -> FetchConfig:
    """Build the per-fetch settings for one device and date range."""
    fetch = cfg["fetch"]
    return FetchConfig(
        device_id=device_id,
        start=start,
        end=end,
        max_days=max_days if max_days is not None else int(fetch["max_days"]),
        max_fetches=int(fetch["max_fetches"]),
        page_size=int(fetch["page_size"]),
        delay_ms=int(cfg["api"]["rate_limit_delay_ms"]),
    )
