"""modguard CLI -- admin commands for the moderation service."""

import asyncio
import getpass
import logging
from pathlib import Path

import click
import yaml
from rich.console import Console
from rich.table import Table

from modguard import __version__
from modguard.moderation.errors import (
    AlreadyReviewedError,
    NotFoundError,
    StoreCorruptedError,
    ValidationError,
)
from modguard.security.audit_log import AuditAction
from modguard.services import ModerationServices, build_services
from modguard.settings import Settings

console = Console()

_ACTION_STYLES = {
    "allow": "green",
    "skip": "dim",
    "flag": "yellow",
    "review": "yellow",
    "block": "red",
}


def _services(ctx: click.Context) -> ModerationServices:
    if ctx.obj is None:
        ctx.obj = build_services(ctx.find_root().meta["settings"])
    return ctx.obj


def _styled(action: str) -> str:
    style = _ACTION_STYLES.get(action, "white")
    return f"[{style}]{action}[/]"


@click.group()
@click.version_option(version=__version__)
@click.option("--home", type=click.Path(file_okay=False), default=None, help="Data directory (overrides MODGUARD_HOME)")
@click.pass_context
def main(ctx: click.Context, home: str | None):
    """modguard -- tiered content moderation.

    Test content against the current policy, manage the configuration
    document, and work the human review queue.
    """
    settings = Settings.from_env()
    if home:
        settings.home = Path(home)
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")
    ctx.meta["settings"] = settings


# ── Check ────────────────────────────────────────────────────────────


@main.command()
@click.argument("text")
@click.option("--workflow", "-w", default="community", help="Workflow to evaluate under")
@click.pass_context
def check(ctx: click.Context, text: str, workflow: str):
    """Dry-run TEXT through the pipeline with the stored config.

    Nothing is enqueued and no violation is recorded.
    """
    services = _services(ctx)
    decision = asyncio.run(services.config.test_evaluate(text, workflow, services.pipeline))

    table = Table(title=f"Tier flow ({workflow})")
    table.add_column("Tier", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Passed", justify="center")
    table.add_column("Action")
    table.add_column("Message")
    for entry in decision.tier_flow:
        passed = "-" if entry.passed is None else ("[green]Y[/]" if entry.passed else "[red]N[/]")
        table.add_row(entry.tier.value, entry.name, passed, _styled(entry.action.value), entry.message[:70])
    console.print(table)

    verdict = "[green]allowed[/]" if decision.allowed else "[red]not allowed[/]"
    console.print(f"\n  Decision: {_styled(decision.action.value)} ({verdict}) reason={decision.reason}")
    if decision.priority:
        console.print(f"  Review priority: {decision.priority.value}")


# ── Config ───────────────────────────────────────────────────────────


@main.group()
def config():
    """Show, import and export the moderation configuration."""


@config.command(name="show")
@click.pass_context
def config_show(ctx: click.Context):
    """Print the current configuration as YAML."""
    doc = _services(ctx).config.get_document()
    console.print(yaml.safe_dump(doc, sort_keys=False, allow_unicode=True))


@config.command(name="export")
@click.argument("path", required=False, type=click.Path(dir_okay=False))
@click.pass_context
def config_export(ctx: click.Context, path: str | None):
    """Write the configuration to PATH as YAML (stdout if omitted)."""
    text = yaml.safe_dump(_services(ctx).config.get_document(), sort_keys=False, allow_unicode=True)
    if path is None:
        click.echo(text)
        return
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    console.print(f"[green]Configuration written to:[/] {path}")


@config.command(name="import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--actor", default=None, help="Name recorded as updatedBy (default: OS user)")
@click.pass_context
def config_import(ctx: click.Context, path: str, actor: str | None):
    """Replace the configuration with the YAML document at PATH."""
    services = _services(ctx)
    actor = actor or getpass.getuser()
    try:
        with open(path, encoding="utf-8") as f:
            doc = yaml.safe_load(f)
    except yaml.YAMLError as e:
        console.print(f"  [red]Failed to parse:[/] {e}")
        raise SystemExit(1) from e

    try:
        updated = services.config.put(doc, updated_by=actor)
    except ValidationError as e:
        console.print(f"[red]Configuration rejected ({len(e.errors)} error(s)):[/]")
        for error in e.errors:
            console.print(f"  [red]x[/] {error}")
        raise SystemExit(1) from e

    services.audit.log_event(
        actor=actor,
        action=AuditAction.CONFIG_UPDATE,
        resource_type="moderation_config",
        resource_id="config",
        details={"version": updated.version, "source": path},
    )
    console.print(f"[green]Configuration updated to version {updated.version}[/]")


# ── Queue ────────────────────────────────────────────────────────────


@main.group()
def queue():
    """Work the human review queue."""


@queue.command(name="list")
@click.option("--status", "-s", default="pending",
              type=click.Choice(["pending", "approved", "rejected", "all"]))
@click.option("--workflow", "-w", default=None, help="Only items from this workflow")
@click.option("--limit", "-n", default=50, show_default=True)
@click.pass_context
def queue_list(ctx: click.Context, status: str, workflow: str | None, limit: int):
    """List queue items, newest first."""
    try:
        items = _services(ctx).queue.list(status=status, workflow=workflow, limit=limit)
    except StoreCorruptedError as e:
        console.print(f"[red]{e}[/]")
        raise SystemExit(1) from e
    if not items:
        console.print(f"[yellow]No {status} items.[/]")
        return

    table = Table(title=f"Moderation queue ({len(items)} {status})")
    table.add_column("ID", style="dim")
    table.add_column("Workflow", style="cyan")
    table.add_column("Priority")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Content")
    for item in items:
        table.add_row(
            item.id,
            item.workflow,
            item.priority.value,
            _styled(item.overall_action.value),
            item.status.value,
            item.safe_content[:50],
        )
    console.print(table)


@queue.command(name="review")
@click.argument("item_id")
@click.argument("action", type=click.Choice(["approved", "rejected"]))
@click.option("--notes", default=None, help="Reviewer notes")
@click.option("--reviewer", default=None, help="Reviewer identity (default: OS user)")
@click.pass_context
def queue_review(ctx: click.Context, item_id: str, action: str, notes: str | None, reviewer: str | None):
    """Approve or reject queue item ITEM_ID."""
    services = _services(ctx)
    reviewer = reviewer or getpass.getuser()
    try:
        item = services.queue.review(item_id, action, reviewer, notes)
    except (NotFoundError, AlreadyReviewedError, StoreCorruptedError) as e:
        console.print(f"[red]{e}[/]")
        raise SystemExit(1) from e

    services.audit.log_event(
        actor=reviewer,
        action=AuditAction.QUEUE_REVIEW,
        resource_type="queue_item",
        resource_id=item_id,
        details={"action": action},
    )
    console.print(f"  {item.id}: [green]{item.status.value}[/] by {item.reviewed_by}")


# ── Stats ────────────────────────────────────────────────────────────


@main.command()
@click.pass_context
def stats(ctx: click.Context):
    """Show queue counts."""
    try:
        result = _services(ctx).queue.stats()
    except StoreCorruptedError as e:
        console.print(f"[red]{e}[/]")
        raise SystemExit(1) from e
    table = Table(title="Moderation stats")
    table.add_column("Pending", justify="right", style="yellow")
    table.add_column("Approved", justify="right", style="green")
    table.add_column("Rejected", justify="right", style="red")
    table.add_column("Today", justify="right")
    table.add_row(str(result.pending), str(result.approved), str(result.rejected), str(result.today_total))
    console.print(table)


if __name__ == "__main__":
    main()
