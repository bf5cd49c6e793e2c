"""CLI entry point: configure, list stations, and report chill hours.

Usage:
    ambient-chill-hours config --api-key KEY --default-station MAC
    ambient-chill-hours devices
    ambient-chill-hours chill --days 14
    ambient-chill-hours chill --season --year 2024
"""

import argparse
import sys
import warnings
from datetime import timedelta
from pathlib import Path

import pandas as pd
from dotenv import find_dotenv, load_dotenv

from .ambient import AmbientWeatherClient, FetchError
from .chill_hours import ChillHourAggregator, CoverageWarning, SeasonWindow
from .config import (
    check_timezone,
    chill_config,
    fetch_config,
    load_config,
    load_user_config,
    save_config,
    user_config_path,
)
from .fetcher import RangeFetcher

# flag dest -> (section, key)
CONFIG_FLAGS = {
    "api_key": ("api", "api_key"),
    "app_key": ("api", "application_key"),
    "default_station": ("station", "default_mac"),
    "season_start": ("chill", "season_start"),
    "min_temp": ("chill", "min_temp_f"),
    "max_temp": ("chill", "max_temp_f"),
    "rate_limit_delay": ("api", "rate_limit_delay_ms"),
    "timezone": ("station", "timezone"),
}


def make_client(cfg: dict) -> AmbientWeatherClient:
    api = cfg["api"]
    return AmbientWeatherClient(
        api["api_key"],
        api.get("application_key"),
        rate_limit_delay_ms=api["rate_limit_delay_ms"],
        max_retries=api.get("max_retries", 3),
        base_url=api.get("base_url", "https://api.ambientweather.net/v1"),
        timeout=api.get("timeout_s", 30),
    )


def _require_api_key(cfg: dict) -> bool:
    if not cfg["api"].get("api_key"):
        print("API key not configured. Run `ambient-chill-hours config --api-key YOUR_KEY`")
        return False
    return True


def _resolve_timezone(cfg: dict, client: AmbientWeatherClient, mac: str) -> str:
    """Configured zone, else the station's reported zone, else UTC."""
    tz = cfg["station"].get("timezone")
    if tz:
        return tz
    for device in client.list_devices():
        if device.mac_address == mac and device.timezone:
            try:
                return check_timezone(device.timezone)
            except ValueError:
                print(f"  Warning: station reports unknown timezone {device.timezone!r}, using UTC")
    return "UTC"


def cmd_config(args, cfg: dict, path: Path) -> int:
    # only the user file's own settings are saved, never env values or defaults
    user_cfg = load_user_config(path)
    changed = False
    for dest, (section, key) in CONFIG_FLAGS.items():
        value = getattr(args, dest, None)
        if value is not None:
            user_cfg.setdefault(section, {})[key] = value
            changed = True
    if not changed:
        print(f"Configuration at {path}:")
        for section, values in cfg.items():
            for key, value in values.items():
                if key == "api_key" and value:
                    value = value[:4] + "..."
                print(f"  {section}.{key}: {value}")
        return 0

    save_config(user_cfg, path)
    print(f"Configuration saved to {path}")
    return 0


def cmd_devices(args, cfg: dict) -> int:
    if not _require_api_key(cfg):
        return 1
    devices = make_client(cfg).list_devices()
    default_mac = cfg["station"].get("default_mac")

    print("Available weather stations:")
    for i, device in enumerate(devices, start=1):
        marker = " [DEFAULT]" if device.mac_address == default_mac else ""
        print(f"{i}. {device.name} (MAC: {device.mac_address}){marker}")

    if not default_mac:
        print("\nTip: set a default station with:")
        print("  ambient-chill-hours config --default-station YOUR_MAC_ADDRESS")
    return 0


def cmd_chill(args, cfg: dict) -> int:
    if not _require_api_key(cfg):
        return 1
    mac = args.mac or cfg["station"].get("default_mac")
    if not mac:
        print("No station MAC address given and no default configured. Either:")
        print("  1. pass --mac")
        print("  2. run `ambient-chill-hours config --default-station YOUR_MAC`")
        print("  3. run `ambient-chill-hours devices` to list your stations")
        return 1

    client = make_client(cfg)
    tz = _resolve_timezone(cfg, client, mac)
    settings = chill_config(cfg, timezone=tz)
    aggregator = ChillHourAggregator(settings)
    fetcher = RangeFetcher(client)
    now = pd.Timestamp.now(tz=tz)

    print(f"Fetching data for station {mac} (hours in {tz})...")
    if args.season:
        season_start = int(cfg["chill"]["season_start"])
        year = args.year or now.year
        window = SeasonWindow.for_year(season_start, year)
        start = pd.Timestamp(window.start.isoformat(), tz=tz)
        end = min(pd.Timestamp((window.end + timedelta(days=1)).isoformat(), tz=tz), now)
        print(f"  Season {window.label()}, this may take a while...")
        result = fetcher.fetch(
            fetch_config(cfg, mac, start, end, max_days=window.total_days + 2)
        )
        print(f"Retrieved {len(result.samples)} readings")

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", CoverageWarning)
            report = aggregator.summarize_season(result.samples, season_start, year)
        for w in caught:
            print(f"  Warning: {w.message}")
        print(f"\nSeason chill hours (season starts {season_start}/1):")
    else:
        start = now - pd.Timedelta(days=args.days)
        result = fetcher.fetch(fetch_config(cfg, mac, start, now))
        print(f"Retrieved {len(result.samples)} readings")
        report = aggregator.summarize(result.samples)
        print(f"\nChill hours for the last {args.days} days:")

    if not result.complete:
        print("  Note: fetch stopped early, the oldest readings may be missing")
    print(f"Period: {report.period_label}")
    print(f"Temperature range: {settings.min_temp_f:g}°F to {settings.max_temp_f:g}°F")
    print(f"Total hours: {report.total_hours}")
    print(f"Chill hours: {report.chill_hours} ({report.percent_chill_hours:.2f}%)")
    print(
        "\nAn hour counts as a chill hour when at least half of its readings "
        f"were between {settings.min_temp_f:g}°F and {settings.max_temp_f:g}°F."
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ambient-chill-hours",
        description="Calculate chill hours from Ambient Weather station data",
    )
    parser.add_argument(
        "--config", type=Path, default=None,
        help="Config file (default: ~/.ambient-chill-hours/config.yaml)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # config
    p_config = sub.add_parser("config", help="Show or update the saved configuration")
    p_config.add_argument("-k", "--api-key", help="Ambient Weather API key")
    p_config.add_argument("-a", "--app-key", help="Ambient Weather application key")
    p_config.add_argument("-d", "--default-station", help="Default station MAC address")
    p_config.add_argument("-s", "--season-start", type=int, help="Season start month (1-12)")
    p_config.add_argument("-m", "--min-temp", type=float, help="Chill range minimum (°F)")
    p_config.add_argument("-M", "--max-temp", type=float, help="Chill range maximum (°F)")
    p_config.add_argument(
        "-r", "--rate-limit-delay", type=int, help="Delay between API calls (ms, default 1000)"
    )
    p_config.add_argument("-t", "--timezone", help="IANA timezone for hour buckets")

    # devices
    sub.add_parser("devices", help="List available weather stations")

    # chill
    p_chill = sub.add_parser("chill", help="Calculate chill hours for a station")
    p_chill.add_argument("-m", "--mac", help="Station MAC address")
    p_chill.add_argument("-d", "--days", type=int, default=7, help="Days to fetch (default 7)")
    p_chill.add_argument("-y", "--year", type=int, help="Season ending in this year")
    p_chill.add_argument(
        "-s", "--season", action="store_true",
        help="Whole season, from the configured season start month",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv(find_dotenv(usecwd=True), override=False)

    path = args.config or user_config_path()
    try:
        cfg = load_config(path)
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        return 1

    try:
        if args.command == "config":
            return cmd_config(args, cfg, path)
        if args.command == "devices":
            return cmd_devices(args, cfg)
        return cmd_chill(args, cfg)
    except FetchError as e:
        print(f"Error talking to Ambient Weather: {e}")
        return 1
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
