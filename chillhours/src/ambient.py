"""Ambient Weather REST API: device list and paged readings, with retry on 429/5xx."""

import time
from dataclasses import dataclass
from datetime import datetime, timezone

import requests

BASE_URL = "https://api.ambientweather.net/v1"
DEFAULT_RATE_LIMIT_DELAY_MS = 1_000
DEFAULT_MAX_RETRIES = 3
DEFAULT_PAGE_SIZE = 288  # one day of 5-minute readings
HTTP_TOO_MANY_REQUESTS = 429


class FetchError(Exception):
    """A request to the data source failed for good."""

    def __init__(self, message: str, cause: Exception | None = None, attempts: int = 0):
        super().__init__(message)
        self.cause = cause
        self.attempts = attempts


class TransportError(FetchError):
    """Non-retryable failure: auth, bad request, connection error, bad payload."""


class RetryExhausted(FetchError):
    """429/5xx responses kept coming after every retry was spent."""


@dataclass(frozen=True)
class Sample:
    timestamp_utc: int  # epoch milliseconds
    temperature_f: float


@dataclass(frozen=True)
class DeviceInfo:
    mac_address: str
    name: str
    location: str | None = None
    timezone: str | None = None


def is_retryable(status: int | None) -> bool:
    """Rate limiting and server errors are worth another try."""
    if status is None:
        return False
    return status == HTTP_TOO_MANY_REQUESTS or 500 <= status <= 599


def backoff_delay_ms(base_delay_ms: float, retry: int) -> float:
    """Exponential backoff: base, 2x base, 4x base, ..."""
    return base_delay_ms * 2 ** (retry - 1)


def format_end_date(timestamp_ms: int) -> str:
    """Render an epoch-ms timestamp as the ISO string the endDate parameter takes."""
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class AmbientWeatherClient:
    """Thin client for api.ambientweather.net.

    Every request goes through ``_get``, which retries HTTP 429 and 5xx with
    exponential backoff and raises ``TransportError`` for anything else.
    """

    def __init__(
        self,
        api_key: str,
        application_key: str | None = None,
        rate_limit_delay_ms: float = DEFAULT_RATE_LIMIT_DELAY_MS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_url: str = BASE_URL,
        timeout: float = 30,
        session: requests.Session | None = None,
        sleep=time.sleep,
    ):
        self.api_key = api_key
        self.application_key = application_key
        self.rate_limit_delay_ms = rate_limit_delay_ms
        self.max_retries = max_retries
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.sleep = sleep

    def list_devices(self) -> list[DeviceInfo]:
        """Return the stations registered to this API key."""
        return _parse_devices(self._get("devices", self._base_params()))

    def fetch_page(
        self, device_id: str, end_timestamp: int | None = None, limit: int = DEFAULT_PAGE_SIZE
    ) -> list[Sample]:
        """Fetch up to ``limit`` readings at or before ``end_timestamp`` (epoch ms).

        The API returns newest first, but callers should not rely on any order.
        """
        params = self._base_params()
        params["limit"] = limit
        if end_timestamp is not None:
            params["endDate"] = format_end_date(end_timestamp)
        return _parse_samples(self._get(f"devices/{device_id}", params))

    def _base_params(self) -> dict:
        params = {"apiKey": self.api_key}
        if self.application_key:
            params["applicationKey"] = self.application_key
        return params

    def _get(self, path: str, params: dict):
        url = f"{self.base_url}/{path}"
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = self.session.get(url, params=params, timeout=self.timeout)
                resp.raise_for_status()
                return resp.json()
            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if not is_retryable(status):
                    raise TransportError(
                        f"HTTP {status} from /{path}", cause=e, attempts=attempt
                    ) from e
                if attempt > self.max_retries:
                    raise RetryExhausted(
                        f"HTTP {status} from /{path}, gave up after {attempt} attempts",
                        cause=e,
                        attempts=attempt,
                    ) from e
                delay_ms = backoff_delay_ms(self.rate_limit_delay_ms, attempt)
                print(
                    f"  HTTP {status}, retrying in {delay_ms / 1000:.1f}s "
                    f"(retry {attempt}/{self.max_retries})"
                )
                self.sleep(delay_ms / 1000)
            except requests.RequestException as e:
                raise TransportError(
                    f"Request to /{path} failed: {e}", cause=e, attempts=attempt
                ) from e


def _parse_samples(records) -> list[Sample]:
    """Keep readings that carry a usable timestamp and outdoor temperature.

    Readings with missing or non-numeric fields are skipped.
    """
    if not isinstance(records, list):
        raise TransportError(f"Expected a list of readings, got {type(records).__name__}")
    samples = []
    skipped = 0
    for rec in records:
        if not isinstance(rec, dict):
            skipped += 1
            continue
        ts = rec.get("dateutc")
        temp = rec.get("tempf")
        if ts is None or temp is None:
            continue
        try:
            samples.append(Sample(timestamp_utc=int(ts), temperature_f=float(temp)))
        except (TypeError, ValueError):
            skipped += 1
    if skipped:
        print(f"  Warning: skipped {skipped} malformed readings")
    return samples


def _parse_devices(records) -> list[DeviceInfo]:
    if not isinstance(records, list):
        raise TransportError(f"Expected a list of devices, got {type(records).__name__}")
    devices = []
    for rec in records:
        if not isinstance(rec, dict) or not rec.get("macAddress"):
            raise TransportError(f"Device entry without a macAddress: {rec!r}")
        info = rec.get("info") or {}
        last = rec.get("lastData") or {}
        devices.append(
            DeviceInfo(
                mac_address=rec["macAddress"],
                name=info.get("name") or rec["macAddress"],
                location=info.get("location"),
                timezone=last.get("tz"),
            )
        )
    return devices
