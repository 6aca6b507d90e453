"""Value types describing historical candle requests and their results."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping, Sequence

import pandas as pd


class Granularity(str, Enum):
    """Sampling interval of a candle series, named the way the provider spells it."""

    MINUTE = "minute"
    THREE_MINUTE = "3minute"
    FIVE_MINUTE = "5minute"
    TEN_MINUTE = "10minute"
    FIFTEEN_MINUTE = "15minute"
    THIRTY_MINUTE = "30minute"
    SIXTY_MINUTE = "60minute"
    DAY = "day"

    @property
    def unit(self) -> timedelta:
        """Spacing between two consecutive candles."""

        return GRANULARITY_UNITS[self]

    @property
    def is_intraday(self) -> bool:
        return self is not Granularity.DAY

    @classmethod
    def parse(cls, value: "Granularity | str") -> "Granularity":
        """Accept provider names (``"5minute"``) as well as short aliases (``"5m"``, ``"1d"``)."""

        if isinstance(value, Granularity):
            return value
        normalized = str(value).strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            pass
        try:
            return _GRANULARITY_ALIASES[normalized]
        except KeyError as exc:
            raise ValueError(f"Unsupported granularity: {value}") from exc


GRANULARITY_UNITS: Mapping[Granularity, timedelta] = {
    Granularity.MINUTE: timedelta(minutes=1),
    Granularity.THREE_MINUTE: timedelta(minutes=3),
    Granularity.FIVE_MINUTE: timedelta(minutes=5),
    Granularity.TEN_MINUTE: timedelta(minutes=10),
    Granularity.FIFTEEN_MINUTE: timedelta(minutes=15),
    Granularity.THIRTY_MINUTE: timedelta(minutes=30),
    Granularity.SIXTY_MINUTE: timedelta(hours=1),
    Granularity.DAY: timedelta(days=1),
}

_GRANULARITY_ALIASES: Mapping[str, Granularity] = {
    "1m": Granularity.MINUTE,
    "1minute": Granularity.MINUTE,
    "3m": Granularity.THREE_MINUTE,
    "5m": Granularity.FIVE_MINUTE,
    "10m": Granularity.TEN_MINUTE,
    "15m": Granularity.FIFTEEN_MINUTE,
    "30m": Granularity.THIRTY_MINUTE,
    "60m": Granularity.SIXTY_MINUTE,
    "1h": Granularity.SIXTY_MINUTE,
    "hour": Granularity.SIXTY_MINUTE,
    "1d": Granularity.DAY,
    "daily": Granularity.DAY,
}


@dataclass(frozen=True, slots=True)
class TimeRangeRequest:
    """A candle query over ``[start, end]``, both ends inclusive."""

    instrument: str | int
    start: datetime
    end: datetime
    granularity: Granularity
    continuous: bool = False
    include_oi: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "granularity", Granularity.parse(self.granularity))
        if (self.start.tzinfo is None) != (self.end.tzinfo is None):
            raise ValueError("start and end must both be naive or both be timezone-aware")
        if self.start > self.end:
            raise ValueError(f"start {self.start.isoformat()} is after end {self.end.isoformat()}")

    def days_span(self) -> int:
        return (self.end - self.start).days

    def with_range(self, start: datetime, end: datetime) -> "TimeRangeRequest":
        """Copy of this request restricted to another range."""

        return replace(self, start=start, end=end)


@dataclass(frozen=True, slots=True)
class Chunk(TimeRangeRequest):
    """One provider-call-sized slice of a :class:`TimeRangeRequest`.

    ``index`` is the position in the plan, ``0`` being the newest slice.
    """

    index: int = 0

    @classmethod
    def of(cls, request: TimeRangeRequest, start: datetime, end: datetime, *, index: int) -> "Chunk":
        return cls(
            instrument=request.instrument,
            start=start,
            end=end,
            granularity=request.granularity,
            continuous=request.continuous,
            include_oi=request.include_oi,
            index=index,
        )

    def describe(self) -> str:
        return f"{self.instrument}/{self.granularity.value}[{self.start.isoformat()} .. {self.end.isoformat()}]"


@dataclass(frozen=True, slots=True)
class Candle:
    """OHLCV candle; ``oi`` stays ``None`` when the provider did not report open interest."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    oi: float | None = None

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "timestamp": self.timestamp,
            "open": float(self.open),
            "high": float(self.high),
            "low": float(self.low),
            "close": float(self.close),
            "volume": float(self.volume),
        }
        if self.oi is not None:
            record["oi"] = float(self.oi)
        return record


@dataclass(frozen=True, slots=True)
class Series:
    """Chronologically ordered candles with unique timestamps."""

    candles: tuple[Candle, ...] = field(default_factory=tuple)

    @classmethod
    def merge(cls, batches: Iterable[Sequence[Candle]]) -> "Series":
        """Combine chunk results into one ascending, duplicate-free series.

        The sort is stable, so on a timestamp collision the candle from the
        earliest batch wins.
        """

        ordered = sorted((candle for batch in batches for candle in batch), key=lambda candle: candle.timestamp)
        unique: list[Candle] = []
        for candle in ordered:
            if unique and unique[-1].timestamp == candle.timestamp:
                continue
            unique.append(candle)
        return cls(tuple(unique))

    def __len__(self) -> int:
        return len(self.candles)

    def __iter__(self) -> Iterator[Candle]:
        return iter(self.candles)

    def __getitem__(self, index: int) -> Candle:
        return self.candles[index]

    @property
    def first(self) -> Candle | None:
        return self.candles[0] if self.candles else None

    @property
    def last(self) -> Candle | None:
        return self.candles[-1] if self.candles else None

    def timestamps(self) -> list[datetime]:
        return [candle.timestamp for candle in self.candles]

    def to_records(self) -> list[dict[str, Any]]:
        return [candle.to_record() for candle in self.candles]

    def to_frame(self) -> pd.DataFrame:
        """Render the series as a DataFrame indexed by timestamp."""

        columns = ["open", "high", "low", "close", "volume"]
        if any(candle.oi is not None for candle in self.candles):
            columns.append("oi")
        frame = pd.DataFrame(self.to_records(), columns=["timestamp", *columns])
        return frame.set_index("timestamp")
