"""CLI entrypoint for fetching long historical candle ranges via REST."""
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer
from loguru import logger

from market_history.config import load_settings
from market_history.data.history import fetch_history
from market_history.utils import ensure_utc, parse_iso8601

app = typer.Typer(help="Historical data operations")


@app.command()
def download(
    symbol: Optional[str] = typer.Option(None, help="Override symbol (default comes from FetchSettings)."),
    granularity: Optional[str] = typer.Option(None, help="Candle granularity, e.g. minute, 5minute, day or 1h."),
    start: Optional[str] = typer.Option(None, help="Override start timestamp (ISO8601)."),
    end: Optional[str] = typer.Option(None, help="Override end timestamp (ISO8601)."),
    continue_on_error: Optional[bool] = typer.Option(
        None,
        "--continue-on-error/--strict",
        help="Keep going when a chunk fails and report the failures at the end.",
    ),
    config_path: Optional[Path] = typer.Option(None, help="Settings TOML file (default config/settings.toml)."),
    output_path: Optional[Path] = typer.Option(
        None,
        help="Optional destination file; .parquet writes Parquet, anything else JSON lines.",
    ),
    log_level: str = typer.Option("INFO", help="Log level for progress output."),
) -> None:
    """Fetch a candle series and optionally persist it."""

    logger.remove()
    logger.add(sys.stderr, level=log_level.upper())

    settings = load_settings(config_path)

    start_dt = parse_iso8601(start) if start else parse_iso8601(settings.fetch.start_date)
    end_dt = parse_iso8601(end) if end else ensure_utc(datetime.now(timezone.utc))

    if start_dt > end_dt:
        typer.echo("Start timestamp must not be after end timestamp.", err=True)
        raise typer.Exit(code=1)

    result = fetch_history(
        settings,
        start=start_dt,
        end=end_dt,
        symbol=symbol,
        granularity=granularity,
        continue_on_error=continue_on_error,
    )
    series = result.series
    last = series.last

    typer.echo(
        "Fetched {total} candles for {symbol} ({state}){tail}.".format(
            total=len(series),
            symbol=symbol or settings.fetch.symbol,
            state=result.state.value,
            tail=f" ending {last.timestamp.isoformat()}" if last else "",
        )
    )
    for failure in result.failures:
        typer.echo(f"Chunk {failure.chunk.describe()} failed: {failure.error}", err=True)

    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if output_path.suffix == ".parquet":
            series.to_frame().to_parquet(output_path, engine="pyarrow")
        else:
            with output_path.open("w", encoding="utf-8") as handle:
                for record in series.to_records():
                    handle.write(json.dumps(record, default=str) + "\n")
        typer.echo(f"Saved candles to {output_path}")

    if result.failures:
        raise typer.Exit(code=2)


if __name__ == "__main__":  # pragma: no cover
    app()
