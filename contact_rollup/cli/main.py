"""
Command-line interface for contact_rollup.

Provides CLI commands for configuring rollup jobs, running syncs and
wipes, inspecting audit history and running the scheduler.

Usage:
    # Show help
    contact-rollup --help

    # Create a configuration file, then list the accounts in it
    contact-rollup init-config
    contact-rollup config show

    # Run a sync
    contact-rollup sync --dry-run
    contact-rollup sync --full

    # Remove what the rollup created
    contact-rollup wipe --dry-run
"""

import asyncio
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from contact_rollup import __version__
from contact_rollup.cli.formatters import (
    echo_json,
    show_config_history,
    show_run_history,
    show_run_result,
    show_snapshot,
)
from contact_rollup.config.accounts import AccountConfigError, AccountRegistry
from contact_rollup.config.generator import save_config_file
from contact_rollup.config.limits import RollupLimits
from contact_rollup.config.loader import ConfigLoader, ConfigLoadError
from contact_rollup.config.rollup_config import (
    DEFAULT_JOB_KEY,
    Actor,
    RollupConfigInput,
)
from contact_rollup.config.store import ConfigStore, validate_config_input
from contact_rollup.storage.db import RollupDatabase
from contact_rollup.sync.engine import RollupEngine, SyncOptions, WipeOptions
from contact_rollup.sync.errors import ConfigError
from contact_rollup.sync.results import RunStatus, TriggerInfo
from contact_rollup.sync.wipe import WipeMode
from contact_rollup.sync.writer import DEFAULT_MARKER_TAG
from contact_rollup.utils import resolve_config_dir
from contact_rollup.utils.logging import cleanup_old_logs, get_logger, setup_logging
from contact_rollup.utils.paths import DEFAULT_CONFIG_FILENAME, resolve_database_path

# Trigger source recorded for runs started from the command line
CLI_TRIGGER_SOURCE = "manual"

# Trigger source recorded for runs started by the scheduler
SCHEDULE_TRIGGER_SOURCE = "schedule"


def get_config_dir(config_dir: str | None) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_dir: Path, config_file: str | None) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file).expanduser()
    return config_dir / DEFAULT_CONFIG_FILENAME


@dataclass
class Runtime:
    """Objects a command needs to talk to the database and the accounts."""

    database: RollupDatabase
    registry: AccountRegistry
    config_store: ConfigStore
    limits: RollupLimits
    marker_tag: str

    def engine(self) -> RollupEngine:
        return RollupEngine(
            self.config_store,
            self.registry,
            limits=self.limits,
            marker_tag=self.marker_tag,
        )


@contextmanager
def open_runtime(ctx: click.Context) -> Iterator[Runtime]:
    """
    Open the rollup database and account registry for a command.

    Exits with status 1 if the account list is malformed.
    """
    config: dict[str, Any] = ctx.obj.get("config", {})
    config_dir: Path = ctx.obj["config_dir"]

    try:
        registry = AccountRegistry.from_config(config.get("accounts"))
    except AccountConfigError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    db_path = resolve_database_path(config_dir, config.get("database_path"))
    db_path.parent.mkdir(parents=True, exist_ok=True)
    database = RollupDatabase(str(db_path))
    database.initialize()

    try:
        yield Runtime(
            database=database,
            registry=registry,
            config_store=ConfigStore(database, registry),
            limits=RollupLimits.from_dict(config.get("limits")),
            marker_tag=config.get("marker_tag") or DEFAULT_MARKER_TAG,
        )
    finally:
        database.close()


def resolve_job_key(ctx: click.Context, job: str | None) -> str:
    """Job key from the CLI, then the config file, then the default."""
    return job or ctx.obj.get("config", {}).get("job_key") or DEFAULT_JOB_KEY


job_option = click.option(
    "--job",
    "-j",
    default=None,
    help="Rollup job key (default: config 'job_key' or 'primary').",
)

json_option = click.option(
    "--json", "as_json", is_flag=True, help="Print the result as JSON."
)


@click.group()
@click.version_option(version=__version__, prog_name="contact-rollup")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="CONTACT_ROLLUP_CONFIG_DIR",
    help="Configuration directory path (default: ~/.contact-rollup).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="CONTACT_ROLLUP_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: str | None,
    config_file: str | None,
) -> None:
    """
    Contact Rollup.

    Aggregates contacts from many source CRM accounts into one rollup
    target account, deduplicated by email or phone.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(resolved_config_dir, config_file)

    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    config = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigLoadError as e:
        # Allow commands such as init-config to run without a valid file
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    ctx.obj["config"] = config

    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    log_dir = None
    if config.get("log_dir"):
        log_dir = Path(config["log_dir"]).expanduser()

    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)

    log_retention = config.get("log_retention_count", 10)
    if log_retention > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=log_retention)


# =============================================================================
# Init-Config Command
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    Creates a configuration file with the accounts section and all limits
    documented. Add your CRM accounts, then run 'contact-rollup config show'.

    Examples:

        contact-rollup init-config

        contact-rollup init-config --force
    """
    logger = get_logger(__name__)
    config_file = ctx.obj["config_file"]

    click.echo(f"Creating configuration file: {config_file}")

    success, error = save_config_file(config_file, overwrite=force)

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo(f"\nLocation: {config_file}")
        click.echo("\nNext steps:")
        click.echo("1. Add your CRM accounts and mark the target with 'rollup: true'")
        click.echo("2. Run 'contact-rollup config show' to review the rollup job")
        logger.info(f"Created configuration file: {config_file}")
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        logger.error(f"Failed to create configuration file: {error}")
        sys.exit(1)


# =============================================================================
# Sync Command
# =============================================================================


@cli.command("sync")
@click.option(
    "--dry-run", "-n", is_flag=True, help="Collect and dedupe without writing."
)
@click.option(
    "--full", is_flag=True, help="Full sync (ignore the incremental window)."
)
@click.option(
    "--enforce-schedule",
    is_flag=True,
    help="Only run if the job is enabled and the current minute is scheduled.",
)
@click.option(
    "--source-limit",
    type=click.IntRange(min=1),
    default=None,
    help="Only use the first N configured source accounts.",
)
@click.option(
    "--max-upserts",
    type=click.IntRange(min=1),
    default=None,
    help="Override the per-run upsert ceiling.",
)
@job_option
@json_option
@click.pass_context
def sync_command(
    ctx: click.Context,
    dry_run: bool,
    full: bool,
    enforce_schedule: bool,
    source_limit: int | None,
    max_upserts: int | None,
    job: str | None,
    as_json: bool,
) -> None:
    """
    Roll source contacts up into the target account.

    Exits with status 1 if the run failed.

    Examples:

        # Preview what would be written
        contact-rollup sync --dry-run

        # Full sync of the first two sources only
        contact-rollup sync --full --source-limit 2
    """
    logger = get_logger(__name__)
    options = SyncOptions(
        dry_run=dry_run,
        full_sync=full,
        job_key=resolve_job_key(ctx, job),
        enforce_schedule=enforce_schedule,
        source_account_limit=source_limit,
        max_upserts=max_upserts,
        trigger=TriggerInfo(source=CLI_TRIGGER_SOURCE),
    )

    with open_runtime(ctx) as runtime:
        result = asyncio.run(runtime.engine().run_sync(options))

    if as_json:
        echo_json(result.to_dict())
    else:
        show_run_result(result)

    if result.status == RunStatus.FAILED:
        logger.error(f"Sync '{result.job_key}' failed")
        sys.exit(1)


# =============================================================================
# Wipe Command
# =============================================================================


@cli.command("wipe")
@click.option(
    "--mode",
    "-m",
    type=click.Choice([m.value for m in WipeMode], case_sensitive=False),
    default=WipeMode.TAGGED.value,
    show_default=True,
    help="'tagged' deletes rollup-tagged contacts; 'all' deletes every contact.",
)
@click.option(
    "--dry-run", "-n", is_flag=True, help="Count eligible contacts without deleting."
)
@click.option(
    "--confirm-all",
    is_flag=True,
    help="Required to delete every contact with --mode all.",
)
@click.option(
    "--max-deletes",
    type=click.IntRange(min=1),
    default=None,
    help="Override the per-run delete ceiling.",
)
@job_option
@json_option
@click.pass_context
def wipe_command(
    ctx: click.Context,
    mode: str,
    dry_run: bool,
    confirm_all: bool,
    max_deletes: int | None,
    job: str | None,
    as_json: bool,
) -> None:
    """
    Delete contacts from the rollup target account.

    Examples:

        # Count what a tagged wipe would delete
        contact-rollup wipe --dry-run

        # Delete every contact on the target
        contact-rollup wipe --mode all --confirm-all
    """
    logger = get_logger(__name__)
    wipe_mode = WipeMode(mode.lower())

    if wipe_mode == WipeMode.ALL and not dry_run and not confirm_all:
        raise click.UsageError(
            "--mode all deletes every contact on the target; pass --confirm-all"
        )

    options = WipeOptions(
        dry_run=dry_run,
        mode=wipe_mode,
        job_key=resolve_job_key(ctx, job),
        max_deletes=max_deletes,
        trigger=TriggerInfo(source=CLI_TRIGGER_SOURCE),
    )

    with open_runtime(ctx) as runtime:
        result = asyncio.run(runtime.engine().run_wipe(options))

    if as_json:
        echo_json(result.to_dict())
    else:
        show_run_result(result)

    if result.status == RunStatus.FAILED:
        logger.error(f"Wipe '{result.job_key}' failed")
        sys.exit(1)


# =============================================================================
# Config Commands
# =============================================================================


@cli.group("config")
def config_group() -> None:
    """
    Show or change the rollup job configuration.

    Examples:

        contact-rollup config show

        contact-rollup config set --target hq --source store-1 --source store-2
    """
    pass


@config_group.command("show")
@job_option
@json_option
@click.pass_context
def config_show_command(ctx: click.Context, job: str | None, as_json: bool) -> None:
    """Show the effective configuration and the eligible accounts."""
    with open_runtime(ctx) as runtime:
        snapshot = runtime.config_store.get_snapshot(job_key=resolve_job_key(ctx, job))

    if as_json:
        echo_json(
            {
                "config": snapshot.config.to_dict(),
                "is_default_config": snapshot.is_default_config,
                "target_options": [o.key for o in snapshot.target_options],
                "source_options": [o.key for o in snapshot.source_options],
            }
        )
    else:
        show_snapshot(snapshot)


@config_group.command("set")
@click.option("--target", "-t", default=None, help="Target (rollup) account key.")
@click.option(
    "--source",
    "-s",
    "sources",
    multiple=True,
    help="Source account key; repeat for each source. Replaces the source list.",
)
@click.option("--enable/--disable", "enabled", default=None, help="Enable the job.")
@click.option(
    "--interval-hours",
    type=int,
    default=None,
    help="Incremental sync every N hours (1-24).",
)
@click.option(
    "--minute", type=int, default=None, help="Incremental sync minute, UTC (0-55)."
)
@click.option(
    "--full-sync/--no-full-sync",
    "full_sync_enabled",
    default=None,
    help="Run a daily full sync.",
)
@click.option("--full-hour", type=int, default=None, help="Full sync hour, UTC (0-23).")
@click.option(
    "--full-minute", type=int, default=None, help="Full sync minute, UTC (0-55)."
)
@click.option(
    "--scrub-emails/--no-scrub-emails",
    default=None,
    help="Discard emails that fail the deliverability check.",
)
@click.option(
    "--scrub-phones/--no-scrub-phones",
    default=None,
    help="Discard phones that fail the dialability check.",
)
@click.option("--actor-id", default=None, help="Id of the user making the change.")
@click.option("--actor-name", default=None, help="Name of the user.")
@click.option("--actor-email", default=None, help="Email of the user.")
@click.option("--actor-role", default=None, help="Role of the user.")
@click.option("--actor-avatar-url", default=None, help="Avatar URL of the user.")
@job_option
@click.pass_context
def config_set_command(
    ctx: click.Context,
    target: str | None,
    sources: tuple[str, ...],
    enabled: bool | None,
    interval_hours: int | None,
    minute: int | None,
    full_sync_enabled: bool | None,
    full_hour: int | None,
    full_minute: int | None,
    scrub_emails: bool | None,
    scrub_phones: bool | None,
    actor_id: str | None,
    actor_name: str | None,
    actor_email: str | None,
    actor_role: str | None,
    actor_avatar_url: str | None,
    job: str | None,
) -> None:
    """
    Change the rollup job configuration.

    Only the options given are changed. Numeric values are clamped into
    range. The target must be an account flagged 'rollup: true' and at
    least one source must remain.
    """
    logger = get_logger(__name__)
    job_key = resolve_job_key(ctx, job)

    config_input = RollupConfigInput(
        target_account_key=target,
        source_account_keys=list(sources) if sources else None,
        enabled=enabled,
        schedule_interval_hours=interval_hours,
        schedule_minute_utc=minute,
        full_sync_enabled=full_sync_enabled,
        full_sync_hour_utc=full_hour,
        full_sync_minute_utc=full_minute,
        scrub_invalid_emails=scrub_emails,
        scrub_invalid_phones=scrub_phones,
    )
    actor = Actor(
        id=actor_id,
        name=actor_name,
        email=actor_email,
        role=actor_role,
        avatar_url=actor_avatar_url,
    )

    with open_runtime(ctx) as runtime:
        snapshot = runtime.config_store.get_snapshot(job_key=job_key)
        try:
            config_input = validate_config_input(config_input, snapshot)
        except ConfigError as e:
            raise click.UsageError(str(e)) from e

        saved = runtime.config_store.upsert_config(config_input, job_key, actor)

    click.echo(click.style(f"Rollup job '{job_key}' saved.", fg="green"))
    click.echo(f"  Target: {saved.target_account_key}")
    click.echo(f"  Sources: {', '.join(saved.source_account_keys)}")
    logger.info(f"Saved rollup config '{job_key}'")


# =============================================================================
# History Commands
# =============================================================================


@cli.group("history")
def history_group() -> None:
    """Show run and configuration audit history."""
    pass


@history_group.command("runs")
@click.option(
    "--type",
    "run_type",
    type=click.Choice(["sync", "wipe"]),
    default=None,
    help="Only show runs of this type.",
)
@click.option("--limit", "-l", type=click.IntRange(min=1), default=20, show_default=True)
@job_option
@json_option
@click.pass_context
def history_runs_command(
    ctx: click.Context,
    run_type: str | None,
    limit: int,
    job: str | None,
    as_json: bool,
) -> None:
    """Show recent sync and wipe runs, newest first."""
    with open_runtime(ctx) as runtime:
        entries = runtime.database.list_run_history(
            resolve_job_key(ctx, job), limit=limit, run_type=run_type
        )

    if as_json:
        echo_json(entries)
    else:
        show_run_history(entries)


@history_group.command("config")
@click.option("--limit", "-l", type=click.IntRange(min=1), default=20, show_default=True)
@job_option
@json_option
@click.pass_context
def history_config_command(
    ctx: click.Context, limit: int, job: str | None, as_json: bool
) -> None:
    """Show recent configuration changes, newest first."""
    with open_runtime(ctx) as runtime:
        entries = runtime.database.list_config_history(
            resolve_job_key(ctx, job), limit=limit
        )

    if as_json:
        echo_json(entries)
    else:
        show_config_history(entries)


# =============================================================================
# Daemon Commands
# =============================================================================


@cli.group("daemon")
def daemon_group() -> None:
    """
    Run scheduled syncs.

    The scheduler wakes every minute and runs the job's incremental or
    full sync when its schedule says so.

    Examples:

        contact-rollup -v daemon run
    """
    pass


@daemon_group.command("run")
@job_option
@click.pass_context
def daemon_run_command(ctx: click.Context, job: str | None) -> None:
    """
    Run the scheduler in the foreground until SIGTERM/SIGINT.

    A PID file in the config directory keeps a second scheduler from
    starting for the same configuration.
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    job_key = resolve_job_key(ctx, job)

    from contact_rollup.daemon import (
        PID_FILENAME,
        DaemonAlreadyRunningError,
        DaemonError,
        SyncMode,
        TickScheduler,
    )

    with open_runtime(ctx) as runtime:
        engine = runtime.engine()

        def tick_callback(minute) -> bool:
            # Only due minutes reach the engine, so idle ticks leave no history
            if engine.scheduled_mode(job_key, minute) == SyncMode.SKIP:
                return True
            result = asyncio.run(
                engine.run_sync(
                    SyncOptions(
                        job_key=job_key,
                        enforce_schedule=True,
                        trigger=TriggerInfo(source=SCHEDULE_TRIGGER_SOURCE),
                        now=minute,
                    )
                )
            )
            if not result.skipped and result.status != RunStatus.DISABLED:
                logger.info(result.summary())
            return result.status != RunStatus.FAILED

        click.echo(f"Starting scheduler for job '{job_key}' (Ctrl+C to stop)")
        try:
            scheduler = TickScheduler(pid_file=config_dir / PID_FILENAME)
            scheduler.set_tick_callback(tick_callback)
            scheduler.run()
        except DaemonAlreadyRunningError as e:
            click.echo(click.style(f"Error: {e}", fg="red"), err=True)
            sys.exit(1)
        except DaemonError as e:
            logger.error(f"Daemon error: {e}")
            click.echo(click.style(f"Daemon error: {e}", fg="red"), err=True)
            sys.exit(1)

    click.echo(click.style("\nScheduler stopped gracefully.", fg="green"))
