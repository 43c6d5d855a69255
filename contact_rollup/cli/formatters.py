"""CLI output formatting functions.

This module contains functions for displaying run results, the effective
rollup configuration and audit history on the command line.
"""

import json
from typing import TYPE_CHECKING, Any

import click

if TYPE_CHECKING:
    from contact_rollup.config.rollup_config import ConfigSnapshot
    from contact_rollup.sync.recorder import RunResult

STATUS_COLORS = {"ok": "green", "failed": "red", "disabled": "yellow"}

# Error entries shown before summarizing the rest
MAX_ERRORS_SHOWN = 10


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


def show_run_result(result: "RunResult") -> None:
    """
    Display a sync or wipe result with its errors.

    Args:
        result: SyncRunResult or WipeRunResult
    """
    lines = result.summary().splitlines()
    color = STATUS_COLORS.get(result.status.value)
    click.echo(click.style(lines[0], fg=color, bold=True))
    for line in lines[1:]:
        click.echo(line)

    per_source = getattr(result, "per_source", None)
    if per_source:
        click.echo("\nPer source:")
        for key, stats in per_source.items():
            click.echo(
                f"  {key} ({stats.provider}): fetched {stats.fetched}, "
                f"accepted {stats.accepted}, invalid {stats.skipped_invalid}"
            )

    if result.errors:
        click.echo(click.style("\nErrors:", fg="red"))
        items = list(result.errors.items())
        for key, message in items[:MAX_ERRORS_SHOWN]:
            click.echo(f"  {key}: {message}")
        if len(items) > MAX_ERRORS_SHOWN:
            click.echo(f"  ... and {len(items) - MAX_ERRORS_SHOWN} more")


def show_snapshot(snapshot: "ConfigSnapshot") -> None:
    """Display the effective configuration and the account choices."""
    config = snapshot.config
    origin = "computed defaults" if snapshot.is_default_config else "saved"

    click.echo(f"Rollup job: {config.job_key} ({origin})")
    click.echo(f"  Target: {config.target_account_key or '(none)'}")
    if config.source_account_keys:
        click.echo(f"  Sources ({len(config.source_account_keys)}):")
        for key in config.source_account_keys:
            click.echo(f"    - {key}")
    else:
        click.echo("  Sources: (none)")

    click.echo(f"  Enabled: {'yes' if config.enabled else 'no'}")
    click.echo(
        f"  Incremental: every {config.schedule_interval_hours}h "
        f"at :{config.schedule_minute_utc:02d} UTC"
    )
    if config.full_sync_enabled:
        click.echo(
            f"  Full sync: daily at {config.full_sync_hour_utc:02d}:"
            f"{config.full_sync_minute_utc:02d} UTC"
        )
    else:
        click.echo("  Full sync: disabled")
    click.echo(
        f"  Scrub invalid emails: {'yes' if config.scrub_invalid_emails else 'no'}, "
        f"phones: {'yes' if config.scrub_invalid_phones else 'no'}"
    )

    if config.last_synced_at:
        status = config.last_sync_status or "unknown"
        click.echo(
            f"  Last run: {config.last_synced_at} "
            + click.style(status, fg=STATUS_COLORS.get(status))
        )

    if snapshot.target_options:
        click.echo("\nRollup-eligible accounts:")
        for option in snapshot.target_options:
            click.echo(f"  {option.key} - {option.name} ({option.provider})")
    if snapshot.source_options:
        click.echo("\nSource-eligible accounts:")
        for option in snapshot.source_options:
            click.echo(f"  {option.key} - {option.name} ({option.provider})")


def show_run_history(entries: list[dict[str, Any]]) -> None:
    if not entries:
        click.echo("No runs recorded.")
        return

    for entry in entries:
        status = entry.get("status") or "unknown"
        totals = entry.get("totals") or {}
        kind = entry.get("run_type")
        if kind == "wipe":
            counts = (
                f"{totals.get('deletes_succeeded', 0)} deleted, "
                f"{totals.get('deletes_failed', 0)} failed"
            )
            mode = entry.get("wipe_mode") or entry.get("mode")
        else:
            counts = (
                f"{totals.get('upserts_succeeded', 0)} upserted, "
                f"{totals.get('upserts_failed', 0)} failed"
            )
            mode = entry.get("mode")
        dry = " dry-run" if entry.get("dry_run") else ""
        click.echo(
            f"{entry.get('started_at')}  {kind:<4} {mode}{dry}  "
            + click.style(f"{status:<8}", fg=STATUS_COLORS.get(status))
            + f"  {counts}  ({entry.get('trigger_source') or 'manual'})"
        )


def show_config_history(entries: list[dict[str, Any]]) -> None:
    if not entries:
        click.echo("No configuration changes recorded.")
        return

    for entry in entries:
        who = (
            entry.get("changed_by_user_name")
            or entry.get("changed_by_user_email")
            or entry.get("changed_by_user_id")
            or "unknown"
        )
        fields = ", ".join(entry.get("changed_fields") or []) or "(none)"
        click.echo(f"{entry.get('created_at')}  by {who}: {fields}")
