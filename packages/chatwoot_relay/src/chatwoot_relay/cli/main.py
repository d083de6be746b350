"""
Relay CLI

Command-line interface for operating the Z-API -> Chatwoot relay.

Commands:
- queue-stats: Job counts per state
- failed-jobs: List terminally failed jobs
- retry-job: Re-queue a failed job
- completed-jobs / clean-completed: Inspect or drop retained completed jobs
- list-mappings / cache-stats: Browse the identity cache
- show-mapping / forget-mapping: Inspect or drop a cached identity mapping
- conversation-status: Open, resolve or set pending a participant's conversation
- pause / resume: Stop or restart job claiming
"""

import asyncio
from typing import Any, Awaitable, Callable

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from basecore.redis import close_redis_client, get_redis_client
from basecore.redaction import mask_phone
from basecore.settings import get_settings

from chatwoot_relay.contracts.envelope import normalize_participant_id
from chatwoot_relay.platform.chatwoot.client import CONVERSATION_STATUSES
from chatwoot_relay.queue.delivery_queue import DeliveryQueue
from chatwoot_relay.routing.identity_cache import IdentityCache
from chatwoot_relay.runtime import RelayRuntime, build_cache, build_queue

app = typer.Typer(
    name="chatwoot-relay",
    help="Z-API -> Chatwoot relay CLI",
)

console = Console()


def get_queue() -> DeliveryQueue:
    return build_queue(get_settings(), get_redis_client())


def get_cache() -> IdentityCache:
    return build_cache(get_settings(), get_redis_client())


def get_runtime() -> RelayRuntime:
    return RelayRuntime.from_settings(get_settings(), get_redis_client())


def run(operation: Callable[[], Awaitable[Any]]) -> Any:
    """Run one async operation and close the Redis pool afterwards."""

    async def _run():
        try:
            return await operation()
        finally:
            await close_redis_client()

    return asyncio.run(_run())


@app.command()
def queue_stats():
    """
    Show job counts per state.
    """
    stats = run(lambda: get_queue().stats())

    table = Table(title=f"Queue {stats['queue']}")
    table.add_column("State")
    table.add_column("Jobs", justify="right")
    for state in ("waiting", "delayed", "active", "completed", "failed"):
        table.add_row(state, str(stats[state]))
    console.print(table)

    for kind, counts in stats["by_kind"].items():
        rprint(f"  {kind}: waiting={counts['waiting']} delayed={counts['delayed']}")
    if stats["paused"]:
        rprint("[yellow]Queue is paused[/yellow]")


@app.command()
def failed_jobs(
    limit: int = typer.Option(20, help="Maximum number of jobs to show"),
):
    """
    List terminally failed jobs, newest first.
    """
    jobs = run(lambda: get_queue().failed_jobs(limit))

    if not jobs:
        rprint("[green]No failed jobs[/green]")
        raise typer.Exit(0)

    table = Table(title="Failed jobs")
    table.add_column("ID", style="dim")
    table.add_column("Kind")
    table.add_column("Message")
    table.add_column("Attempts", justify="right")
    table.add_column("Reason")
    table.add_column("Finished")

    for job in jobs:
        table.add_row(
            job.job_id,
            job.kind,
            str(job.payload.get("messageId", "-")),
            f"{job.attempts_made}/{job.max_attempts}",
            (job.failed_reason or "-")[:60],
            job.finished_at.strftime("%Y-%m-%d %H:%M:%S") if job.finished_at else "-",
        )

    console.print(table)


@app.command()
def retry_job(
    job_id: str = typer.Argument(..., help="ID of a failed job"),
):
    """
    Put a failed job back in the queue with fresh attempts.
    """
    job = run(lambda: get_queue().retry_failed(job_id))

    if job is None:
        rprint(f"[red]No failed job with ID {job_id}[/red]")
        raise typer.Exit(1)

    rprint(f"[green]Job {job_id} re-queued[/green]")


@app.command()
def completed_jobs(
    limit: int = typer.Option(20, help="Maximum number of jobs to show"),
):
    """
    List retained completed jobs, newest first.
    """
    jobs = run(lambda: get_queue().completed_jobs(limit))

    if not jobs:
        rprint("[yellow]No completed jobs retained[/yellow]")
        raise typer.Exit(0)

    table = Table(title="Completed jobs")
    table.add_column("ID", style="dim")
    table.add_column("Kind")
    table.add_column("Message")
    table.add_column("Result")
    table.add_column("Finished")

    for job in jobs:
        table.add_row(
            job.job_id,
            job.kind,
            str(job.payload.get("messageId", "-")),
            str((job.result or {}).get("status", "-")),
            job.finished_at.strftime("%Y-%m-%d %H:%M:%S") if job.finished_at else "-",
        )

    console.print(table)


@app.command()
def clean_completed():
    """
    Drop all retained completed jobs.
    """
    removed = run(lambda: get_queue().clean_completed())
    rprint(f"[green]Removed {removed} completed jobs[/green]")


@app.command()
def list_mappings(
    limit: int = typer.Option(50, help="Maximum number of mappings to show"),
):
    """
    List cached identity mappings (unordered).
    """
    mappings = run(lambda: get_cache().list_mappings(limit))

    if not mappings:
        rprint("[yellow]No mappings cached[/yellow]")
        raise typer.Exit(0)

    table = Table(title="Identity mappings")
    table.add_column("Participant")
    table.add_column("Contact", justify="right")
    table.add_column("Conversation", justify="right")
    table.add_column("Name")
    table.add_column("Last message")

    for mapping in mappings:
        table.add_row(
            mask_phone(mapping.participant_id),
            str(mapping.platform_contact_id),
            str(mapping.platform_conversation_id),
            mapping.display_name or "-",
            mapping.last_message_at.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


@app.command()
def cache_stats():
    """
    Show how many mappings are cached and for how long.
    """
    stats = run(lambda: get_cache().stats())

    rprint(f"  Namespace: {stats['namespace']}")
    rprint(f"  Mappings: {stats['mappings']}")
    rprint(f"  TTL: {stats['ttl_seconds']}s")


@app.command()
def show_mapping(
    phone: str = typer.Argument(..., help="Participant phone number"),
):
    """
    Show the cached Chatwoot identity for a participant.
    """
    mapping = run(lambda: get_cache().get(phone))

    if mapping is None:
        rprint(f"[yellow]No mapping cached for {phone}[/yellow]")
        raise typer.Exit(1)

    rprint(f"  Participant: {mapping.participant_id}")
    rprint(f"  Contact: {mapping.platform_contact_id}")
    rprint(f"  Conversation: {mapping.platform_conversation_id}")
    rprint(f"  Name: {mapping.display_name or '-'}")
    rprint(f"  Last message: {mapping.last_message_at.isoformat()}")
    rprint(f"  Expires: {mapping.expires_at.isoformat() if mapping.expires_at else '-'}")


@app.command()
def forget_mapping(
    phone: str = typer.Argument(..., help="Participant phone number"),
):
    """
    Drop a participant's cached mapping; the next message re-resolves it.
    """

    async def forget():
        runtime = get_runtime()
        try:
            return await runtime.resolver.forget(phone)
        finally:
            await runtime.close()

    removed = run(forget)

    if removed:
        rprint(f"[green]Mapping for {phone} removed[/green]")
    else:
        rprint(f"[yellow]No mapping cached for {phone}[/yellow]")


@app.command()
def conversation_status(
    phone: str = typer.Argument(..., help="Participant phone number"),
    status: str = typer.Argument(..., help="open, resolved or pending"),
):
    """
    Change the status of a participant's mapped conversation.

    Resolving (or setting pending) also drops the cached mapping so the
    participant's next message opens a fresh conversation. The change runs
    under the participant lock, so it never interleaves with a delivery for
    the same participant.
    """
    if status not in CONVERSATION_STATUSES:
        rprint(f"[red]Unknown status: {status}[/red]")
        raise typer.Exit(1)

    participant_id = normalize_participant_id(phone)

    async def change():
        runtime = get_runtime()
        try:
            async with runtime.lock.hold(participant_id):
                mapping = await runtime.cache.get(participant_id)
                if mapping is None:
                    return None

                conversation = await runtime.platform.update_conversation_status(
                    mapping.platform_conversation_id, status
                )
                if status != "open":
                    await runtime.resolver.forget(participant_id)
                return conversation
        finally:
            await runtime.close()

    conversation = run(change)

    if conversation is None:
        rprint(f"[yellow]No mapping cached for {phone}[/yellow]")
        raise typer.Exit(1)

    rprint(f"[green]Conversation {conversation.get('id')} is now {conversation.get('status')}[/green]")


@app.command()
def pause():
    """
    Stop workers from claiming jobs. Webhooks keep enqueueing.
    """
    run(lambda: get_queue().pause())
    rprint("[yellow]Queue paused[/yellow]")


@app.command()
def resume():
    """
    Let workers claim jobs again.
    """
    run(lambda: get_queue().resume())
    rprint("[green]Queue resumed[/green]")


if __name__ == "__main__":
    app()
