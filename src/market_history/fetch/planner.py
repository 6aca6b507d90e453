"""Split long candle requests into provider-sized, non-overlapping chunks."""
from __future__ import annotations

from datetime import timedelta
from typing import List, Mapping

from loguru import logger

from market_history.data.models import Chunk, Granularity, TimeRangeRequest
from market_history.utils import ceil_to_grid, floor_to_grid

# Longest range a single historical call may cover, per granularity.
DEFAULT_MAX_SPANS: Mapping[Granularity, timedelta] = {
    Granularity.MINUTE: timedelta(days=60),
    Granularity.THREE_MINUTE: timedelta(days=100),
    Granularity.FIVE_MINUTE: timedelta(days=100),
    Granularity.TEN_MINUTE: timedelta(days=100),
    Granularity.FIFTEEN_MINUTE: timedelta(days=200),
    Granularity.THIRTY_MINUTE: timedelta(days=200),
    Granularity.SIXTY_MINUTE: timedelta(days=400),
    Granularity.DAY: timedelta(days=2000),
}


def spans_for_candle_limit(limit: int) -> dict[Granularity, timedelta]:
    """Span table for providers that cap the number of candles per call instead of days."""

    if limit < 1:
        raise ValueError("limit must be positive")
    return {granularity: granularity.unit * limit for granularity in Granularity}


class ChunkPlanner:
    """Plan the sequence of provider calls needed to cover a request.

    Chunks are emitted newest first. Each chunk covers at most the configured
    span for its granularity and consecutive chunks are separated by exactly
    one granularity unit, so inclusive provider ranges never return the same
    boundary candle twice and never skip one.
    """

    def __init__(self, max_spans: Mapping[Granularity, timedelta] | None = None) -> None:
        spans = dict(DEFAULT_MAX_SPANS)
        if max_spans:
            spans.update({Granularity.parse(key): value for key, value in max_spans.items()})
        for granularity, span in spans.items():
            if span <= timedelta(0):
                raise ValueError(f"max span for {granularity.value} must be positive")
        self._max_spans = spans

    def max_span(self, granularity: Granularity | str) -> timedelta:
        return self._max_spans[Granularity.parse(granularity)]

    def is_within_limits(self, request: TimeRangeRequest) -> bool:
        """Whether the request fits into a single provider call."""

        return request.end - request.start + request.granularity.unit <= self._effective_span(request.granularity)

    def validate(self, request: TimeRangeRequest) -> None:
        if not self.is_within_limits(request):
            raise ValueError(
                "Date range of {days} days exceeds maximum allowed {limit} days for {granularity} interval".format(
                    days=request.days_span(),
                    limit=self.max_span(request.granularity).days,
                    granularity=request.granularity.value,
                )
            )

    def plan(self, request: TimeRangeRequest) -> List[Chunk]:
        """Chunk boundaries are candle open times on the UTC epoch grid of the granularity.

        Bounds between two candles are narrowed to the candles inside the
        range; a range holding no candle open time yields no chunks.
        """

        unit = request.granularity.unit
        span = self._effective_span(request.granularity)
        first = ceil_to_grid(request.start, unit)

        chunks: List[Chunk] = []
        cursor = floor_to_grid(request.end, unit)
        while cursor >= first:
            start = max(first, cursor - span + unit)
            chunks.append(Chunk.of(request, start, cursor, index=len(chunks)))
            cursor = start - unit

        logger.debug(
            "Planned {count} chunk(s) for {instrument} ({granularity}) spanning {days} days",
            count=len(chunks),
            instrument=request.instrument,
            granularity=request.granularity.value,
            days=request.days_span(),
        )
        return chunks

    def _effective_span(self, granularity: Granularity) -> timedelta:
        # Whole candles only, and at least one so the cursor always advances.
        unit = granularity.unit
        return max(unit, self._max_spans[granularity] // unit * unit)
