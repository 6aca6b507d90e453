"""Transport contract consumed by the retrieval engine."""
from __future__ import annotations

from typing import Protocol, Sequence

from market_history.data.models import Candle, Chunk


class Transport(Protocol):
    """Performs one provider call for a chunk and decodes the candles it returns.

    Failures must be raised as members of :mod:`market_history.data.errors`
    so the retry executor can tell transient from fatal ones.
    """

    async def call(self, chunk: Chunk) -> Sequence[Candle]:
        raise NotImplementedError
