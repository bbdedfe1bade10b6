"""
Operational CLI for log-relay.

Commands:
  ping      send one test record to a destination
  ship      ship NDJSON log records from a file or stdin
  settings  print the effective settings
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import sys
from pathlib import Path
from typing import Iterator, Optional

import typer
from loguru import logger
from pydantic import ValidationError

from .models import Destination, LogRecord
from .payload import ndjson_payload
from .relay import RemoteLogger
from .settings import RelaySettings, get_settings

app = typer.Typer(help="log-relay operational CLI")

# ---------------------------
# Common options
# ---------------------------


def url_opt() -> str:
    return typer.Option(..., "--url", envvar="LOG_RELAY_URL", help="Ingestion endpoint URL")


def name_opt() -> str:
    return typer.Option("default", "--name", help="Destination name")


def api_key_opt() -> Optional[str]:
    return typer.Option(None, "--api-key", envvar="LOG_RELAY_API_KEY", help="Bearer token")


def method_opt() -> str:
    return typer.Option("POST", "--method", help="HTTP method (POST or PUT)")


def timeout_opt() -> float:
    return typer.Option(10.0, "--timeout", help="Per-attempt timeout in seconds")


def _destination(name: str, url: str, api_key: Optional[str], method: str, timeout: float) -> Destination:
    try:
        return Destination(name=name, url=url, api_key=api_key, method=method, timeout=timeout)
    except ValidationError as e:
        typer.echo(f"Invalid destination: {e}", err=True)
        raise typer.Exit(code=2)


def iter_ndjson(path: str) -> Iterator[dict]:
    """Yield JSON objects from an NDJSON file ('-' for stdin), skipping blanks."""
    fh = sys.stdin if path == "-" else Path(path).open("r", encoding="utf-8")
    try:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping line {lineno}: invalid JSON ({e})")
    finally:
        if fh is not sys.stdin:
            fh.close()


def coerce_record(obj: dict) -> LogRecord:
    """Build a LogRecord from a wire-shaped or snake_case dict."""
    data = dict(obj)
    if "requestId" in data:
        data["request_id"] = data.pop("requestId")
    return LogRecord.model_validate(data)


# ---------------------------
# Commands
# ---------------------------


@app.command("ping")
def ping(
    url: str = url_opt(),
    name: str = name_opt(),
    api_key: Optional[str] = api_key_opt(),
    method: str = method_opt(),
    timeout: float = timeout_opt(),
):
    """Send one test record to a destination."""
    dest = _destination(name, url, api_key, method, timeout)

    async def _run() -> bool:
        relay = RemoteLogger([dest])
        try:
            return await relay.test_connection(dest.name)
        finally:
            await relay.shutdown()

    ok = asyncio.run(_run())
    typer.echo(json.dumps({"destination": dest.name, "ok": ok}, indent=2))
    if not ok:
        raise typer.Exit(code=1)


@app.command("ship")
def ship(
    path: str = typer.Argument("-", help="NDJSON file of log records ('-' for stdin)"),
    url: str = url_opt(),
    name: str = name_opt(),
    api_key: Optional[str] = api_key_opt(),
    method: str = method_opt(),
    timeout: float = timeout_opt(),
    ndjson: bool = typer.Option(False, "--ndjson", help="Send line-delimited JSON instead of the envelope"),
    compress: bool = typer.Option(False, "--compress", help="gzip request bodies"),
):
    """Ship NDJSON log records to a destination and print delivery stats."""
    dest = _destination(name, url, api_key, method, timeout)
    settings = get_settings()
    if compress:
        settings = RelaySettings.model_validate({**settings.model_dump(), "enable_compression": True})

    records = []
    for obj in iter_ndjson(path):
        try:
            records.append(coerce_record(obj))
        except ValidationError as e:
            logger.warning(f"Skipping invalid record: {e.errors()[0].get('msg')}")

    async def _run() -> dict:
        relay = RemoteLogger(
            [dest], settings, transform=ndjson_payload if ndjson else None
        )
        async with relay:
            for rec in records:
                relay.log(rec)
        return dataclasses.asdict(relay.stats())

    stats = asyncio.run(_run())
    typer.echo(json.dumps({"read": len(records), **stats}, indent=2))
    if stats["total_failed_requests"] and not stats["total_successful_requests"]:
        raise typer.Exit(code=1)


@app.command("settings")
def show_settings():
    """Print the effective settings (env + .env + defaults)."""
    typer.echo(get_settings().model_dump_json(indent=2))


if __name__ == "__main__":
    app()
