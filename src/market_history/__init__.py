"""Chunked, rate-limited retrieval of long historical candle series."""
