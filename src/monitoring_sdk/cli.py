"""CLI for the monitoring SDK.

Operates on the file-backed delivery queue configured by
``MONITORING_QUEUE_FILE`` so payloads can be queued, inspected and flushed
from shell scripts or cron jobs.
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

import click

from monitoring_sdk.config import get_settings
from monitoring_sdk.logging import setup_logging
from monitoring_sdk.transport.http import HTTPTransport
from monitoring_sdk.transport.storage import FileStorage

_VERBOSITY_LEVELS = ("WARNING", "INFO", "DEBUG")


def _build_transport(**overrides: Any) -> HTTPTransport:
    settings = get_settings()
    return HTTPTransport(storage=FileStorage(settings.queue_file), **overrides)


@click.group()
@click.option(
    "--verbose", "-v", count=True, help="Log transport activity to stderr (-vv for debug)"
)
def main(verbose: int) -> None:
    """Monitoring SDK: deliver telemetry payloads to the ingestion endpoint."""
    setup_logging(_VERBOSITY_LEVELS[min(verbose, len(_VERBOSITY_LEVELS) - 1)])


@main.command()
@click.argument("payload_json")
@click.option(
    "--priority", type=int, default=None, help="Queue priority if it is queued (lower is sooner)"
)
@click.option("--queue-only", is_flag=True, help="Queue the payload without sending it")
def send(payload_json: str, priority: int | None, queue_only: bool) -> None:
    """Send PAYLOAD_JSON, queueing it if it cannot be delivered now."""
    try:
        payload = json.loads(payload_json)
    except json.JSONDecodeError as e:
        click.echo(f"Error: payload is not valid JSON: {e}", err=True)
        sys.exit(2)

    response = asyncio.run(_send(payload, priority=priority, queue_only=queue_only))
    if not response.ok:
        click.echo(f"Error: {response.message}", err=True)
        sys.exit(1)

    if response.filtered:
        click.echo("Filtered.")
    elif response.queued:
        click.echo(f"Queued. {response.message}")
    else:
        click.echo("Sent.")


@main.command()
def flush() -> None:
    """Deliver everything in the persisted queue."""
    responses, remaining = asyncio.run(_flush())
    if not responses:
        click.echo(f"Nothing sent. {remaining} item(s) queued.")
        return

    delivered = sum(1 for r in responses if r.ok)
    click.echo(f"Sent {delivered}/{len(responses)} batch(es). {remaining} item(s) remain queued.")
    for r in responses:
        if not r.ok:
            click.echo(f"  - {r.status.value}: {r.message}")
    if delivered < len(responses):
        sys.exit(1)


@main.command()
def status() -> None:
    """Show configuration and queue statistics."""
    settings = get_settings()
    stats = asyncio.run(_stats())

    click.echo("=== Monitoring SDK ===\n")
    click.echo(f"Endpoint:     {settings.endpoint}")
    click.echo(f"Queue file:   {settings.queue_file}")
    click.echo(f"Compression:  {'enabled' if settings.use_compression else 'disabled'}")
    click.echo(f"Batch size:   {settings.batch_size}")
    click.echo(f"Max retries:  {settings.max_retries}")
    click.echo(f"\nQueued items: {stats['size']}")
    if stats["size"]:
        for priority, count in sorted(stats["priority_distribution"].items()):
            click.echo(f"  priority {priority}: {count}")
        click.echo(f"Average age:  {stats['average_age_ms'] / 1000:.1f}s")


@main.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def clear(yes: bool) -> None:
    """Discard every queued item."""
    if not yes:
        click.confirm("Discard all queued telemetry?", abort=True)
    cleared = asyncio.run(_clear())
    click.echo(f"Cleared {cleared} item(s).")


async def _send(payload: Any, *, priority: int | None, queue_only: bool):
    transport = _build_transport()
    async with transport:
        if queue_only:
            return await transport.enqueue(payload, priority)
        return await transport.send(payload, priority=priority)


async def _flush():
    transport = _build_transport()
    async with transport:
        responses = await transport.flush()
        return responses, transport.get_queue_size()


async def _stats() -> dict[str, Any]:
    transport = _build_transport()
    async with transport:
        return transport.get_stats()


async def _clear() -> int:
    transport = _build_transport()
    async with transport:
        return await transport.clear_queue()
