"""Fetch a contiguous date range from a source that only pages backward in time.

The source answers one question: "up to N readings ending at or before T".
RangeFetcher asks it repeatedly, moving T to just before the oldest reading of
each page, until the requested start is reached, the source runs dry, or the
safety cap on requests is hit.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Protocol

from .ambient import Sample

MAX_DAYS = 365
MAX_FETCHES = 100  # safety limit against endless paging
PAGE_SIZE = 500
DELAY_MS = 1_000
ONE_SECOND_MS = 1_000


class PageSource(Protocol):
    def fetch_page(self, device_id: str, end_timestamp: int, limit: int) -> list[Sample]: ...


@dataclass(frozen=True)
class FetchConfig:
    device_id: str
    start: datetime
    end: datetime | None = None  # None = now
    max_days: int | None = MAX_DAYS
    max_fetches: int = MAX_FETCHES
    page_size: int = PAGE_SIZE
    delay_ms: float = DELAY_MS


@dataclass(frozen=True)
class FetchState:
    """Where the backward walk stands after ``fetches`` pages."""

    cursor_end_ms: int
    samples: tuple[Sample, ...] = ()
    fetches: int = 0
    finished: bool = False
    reached_start: bool = False


@dataclass
class FetchResult:
    samples: list[Sample]
    fetches: int = 0
    reached_start: bool = False
    hit_safety_cap: bool = False
    cancelled: bool = False

    @property
    def complete(self) -> bool:
        """False when the data may be missing its oldest part."""
        return not (self.hit_safety_cap or self.cancelled)


def to_epoch_ms(dt: datetime) -> int:
    """Epoch milliseconds; naive datetimes are taken as UTC."""
    return int(_as_utc(dt).timestamp() * 1000)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _fmt(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def advance(state: FetchState, page: list[Sample], start_ms: int) -> FetchState:
    """Fold one page into the walk and decide where the next request ends.

    The whole page is kept, even readings outside the requested window, so the
    cursor always moves past everything the source has already returned.
    """
    fetches = state.fetches + 1
    if not page:
        return FetchState(state.cursor_end_ms, state.samples, fetches, finished=True)

    samples = state.samples + tuple(page)
    earliest = min(s.timestamp_utc for s in page)
    if earliest <= start_ms:
        return FetchState(
            state.cursor_end_ms, samples, fetches, finished=True, reached_start=True
        )
    return FetchState(earliest - ONE_SECOND_MS, samples, fetches)


def finalize(samples: Iterable[Sample], start_ms: int, end_ms: int) -> list[Sample]:
    """Drop readings outside [start, end], dedupe by timestamp, sort ascending."""
    by_ts: dict[int, Sample] = {}
    for s in samples:
        if start_ms <= s.timestamp_utc <= end_ms:
            by_ts.setdefault(s.timestamp_utc, s)
    return [by_ts[ts] for ts in sorted(by_ts)]


class RangeFetcher:
    """Sequential backward pager over a ``PageSource``.

    ``should_stop`` is checked before every request; returning True ends the
    walk early with whatever was gathered so far.
    """

    def __init__(
        self,
        source: PageSource,
        sleep: Callable[[float], None] = time.sleep,
        should_stop: Callable[[], bool] | None = None,
    ):
        self.source = source
        self.sleep = sleep
        self.should_stop = should_stop

    def fetch_range(
        self,
        device_id: str,
        start: datetime,
        end: datetime | None = None,
        max_days: int | None = MAX_DAYS,
    ) -> FetchResult:
        return self.fetch(FetchConfig(device_id, start, end, max_days=max_days))

    def fetch(self, config: FetchConfig) -> FetchResult:
        end = _as_utc(config.end) if config.end is not None else datetime.now(timezone.utc)
        start = _as_utc(config.start)
        if config.max_days is not None and end - start > timedelta(days=config.max_days):
            clipped = end - timedelta(days=config.max_days)
            print(
                f"  Range exceeds {config.max_days} days, "
                f"starting at {clipped:%Y-%m-%d} instead of {start:%Y-%m-%d}"
            )
            start = clipped

        start_ms, end_ms = to_epoch_ms(start), to_epoch_ms(end)
        if start_ms >= end_ms:
            return FetchResult(samples=[], reached_start=True)

        print(f"  Requested range: {_fmt(start_ms)} to {_fmt(end_ms)}")
        state = FetchState(cursor_end_ms=end_ms)
        cancelled = False

        while not state.finished and state.fetches < config.max_fetches:
            if self.should_stop is not None and self.should_stop():
                cancelled = True
                print(f"  Stopped after {state.fetches} requests")
                break

            print(f"  Fetch #{state.fetches + 1}: readings ending {_fmt(state.cursor_end_ms)}")
            page = self.source.fetch_page(config.device_id, state.cursor_end_ms, config.page_size)
            state = advance(state, page, start_ms)

            if not page:
                print("  Received 0 readings, no more history available")
            elif state.reached_start:
                print(f"  Got {len(page)} readings, reached the requested start")
            elif state.fetches < config.max_fetches:
                print(f"  Got {len(page)} readings, next page ends {_fmt(state.cursor_end_ms)}")
                self.sleep(config.delay_ms / 1000)

        hit_cap = not state.finished and not cancelled
        if hit_cap:
            print(
                f"  Warning: reached the limit of {config.max_fetches} requests "
                "before the start date. Data may be incomplete."
            )

        samples = finalize(state.samples, start_ms, end_ms)
        print(f"  {len(state.samples)} readings fetched, {len(samples)} within range")
        return FetchResult(
            samples=samples,
            fetches=state.fetches,
            reached_start=state.reached_start,
            hit_safety_cap=hit_cap,
            cancelled=cancelled,
        )
