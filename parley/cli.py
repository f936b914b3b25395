"""Parley CLI: operator tools for quota, audit, guardrails and style."""

from __future__ import annotations

import asyncio
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from parley import __version__
from parley.config import Settings, load_settings
from parley.log import configure_logging

console = Console()

_LEVEL_STYLES = {
    "safe": "green",
    "warning": "yellow",
    "critical": "red",
    "exceeded": "bold red",
}


def _settings(config: Optional[str]) -> Settings:
    configure_logging()
    try:
        return load_settings(config)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", default=None, envvar="PARLEY_CONFIG", help="YAML config file")
@click.pass_context
def main(ctx: click.Context, config: Optional[str]):
    """Parley: reply suggestions for team chat.

    Inspect quota usage, audit trails, guardrail violations and feedback,
    and manage organization and user style settings.
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# ── Usage ────────────────────────────────────────────────────────────


@main.command()
@click.argument("subject_id")
@click.option("--period", default="month", type=click.Choice(["month", "all"]))
@click.pass_context
def usage(ctx: click.Context, subject_id: str, period: str):
    """Show quota status and token totals for SUBJECT_ID."""
    from parley.quota import PlanCatalog, QuotaAdmissionController, SQLiteQuotaLedger, UsageLog

    settings = _settings(ctx.obj["config"])
    controller = QuotaAdmissionController(
        SQLiteQuotaLedger(settings.sqlite_path),
        PlanCatalog(settings.plans, settings.subject_plans, settings.default_plan),
        usage_log=UsageLog(settings.data_dir / "usage"),
    )
    status = asyncio.run(controller.usage_status(subject_id))
    totals = controller.usage_totals(subject_id, period)

    level = status.warning_level.value
    console.print(f"\n[bold blue]Parley[/] — Usage for {subject_id}\n")
    table = Table(show_header=False)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Plan", status.plan_id)
    table.add_row("Period", f"{status.period_start:%Y-%m-%d} .. {status.period_end:%Y-%m-%d}")
    table.add_row("Used", f"{status.used} / {status.included} included")
    table.add_row("Overage allowance", str(status.overage_allowance))
    table.add_row("Remaining", str(status.remaining))
    table.add_row("Warning level", f"[{_LEVEL_STYLES.get(level, 'white')}]{level}[/]")
    table.add_row(f"Events ({period})", str(totals["events"]))
    table.add_row("Tokens in / out", f"{totals['input_tokens']} / {totals['output_tokens']}")
    table.add_row("Estimated cost", f"${totals['cost_estimate']:.4f}")
    console.print(table)


# ── Audit ────────────────────────────────────────────────────────────


@main.command()
@click.option("--actor", default=None, help="Filter by actor (subject id)")
@click.option("--action", default=None, help="Filter by action, e.g. suggestion.delivered")
@click.option("--since", default=None, help="ISO timestamp lower bound")
@click.option("--limit", default=50, show_default=True)
@click.option("--format", "fmt", default=None, type=click.Choice(["json", "csv"]), help="Export instead of a table")
@click.pass_context
def audit(
    ctx: click.Context,
    actor: Optional[str],
    action: Optional[str],
    since: Optional[str],
    limit: int,
    fmt: Optional[str],
):
    """List or export audit entries."""
    from parley.audit import AuditLogger

    settings = _settings(ctx.obj["config"])
    logger = AuditLogger(settings.data_dir / "audit")
    filters = {"actor": actor, "action": action, "since": since, "limit": limit}

    if fmt:
        click.echo(logger.export_events(fmt, **filters))
        return

    entries = logger.get_events(**filters)
    if not entries:
        console.print("[yellow]No audit entries found.[/]")
        return

    table = Table(title=f"Audit Log ({len(entries)} entries)")
    table.add_column("Time", style="dim")
    table.add_column("Actor", style="cyan")
    table.add_column("Action")
    table.add_column("Resource")
    table.add_column("OK", justify="center")
    for e in entries:
        table.add_row(
            e.timestamp[:19],
            e.actor,
            escape(e.action),
            escape(f"{e.resource_type}:{e.resource_id}"),
            "[green]v[/]" if e.success else "[red]x[/]",
        )
    console.print(table)


# ── Guardrails ───────────────────────────────────────────────────────


@main.command()
@click.option("--org", "organization_id", default=None, help="Filter by organization")
@click.option("--suggestion", "suggestion_id", default=None, help="Filter by suggestion id")
@click.option("--limit", default=50, show_default=True)
@click.pass_context
def violations(
    ctx: click.Context,
    organization_id: Optional[str],
    suggestion_id: Optional[str],
    limit: int,
):
    """List recorded guardrail violations."""
    from parley.moderation import ViolationLog

    settings = _settings(ctx.obj["config"])
    log = ViolationLog(settings.data_dir / "moderation")
    records = log.get_violations(
        organization_id=organization_id,
        suggestion_id=suggestion_id,
        limit=limit,
    )
    if not records:
        console.print("[green]No violations recorded.[/]")
        return

    table = Table(title=f"Guardrail Violations ({len(records)})")
    table.add_column("Time", style="dim")
    table.add_column("Org")
    table.add_column("Rule", style="cyan")
    table.add_column("Severity")
    table.add_column("Action")
    table.add_column("Snippet")
    for r in records:
        color = "red" if r.severity == "block" else "yellow"
        table.add_row(
            r.timestamp[:19],
            r.organization_id,
            r.rule,
            f"[{color}]{r.severity}[/]",
            r.action,
            escape(r.snippet[:40]),
        )
    console.print(table)


@main.command()
@click.argument("text")
def sanitize(text: str):
    """Show how TEXT is cleaned before it reaches a prompt."""
    from parley.moderation import detect_injection
    from parley.moderation import sanitize as clean

    configure_logging()
    flagged = detect_injection(text)
    console.print(Panel(Text(clean(text)), title="Sanitized"))
    if flagged:
        console.print("  [yellow]![/] Possible prompt injection detected")
    else:
        console.print("  [green]v[/] No injection patterns found")


# ── Feedback ─────────────────────────────────────────────────────────


@main.command()
@click.option("--subject", "subject_id", default=None, help="Filter by subject id")
@click.option("--suggestion", "suggestion_id", default=None, help="Show one suggestion and its feedback")
@click.pass_context
def feedback(ctx: click.Context, subject_id: Optional[str], suggestion_id: Optional[str]):
    """Summarize feedback actions on suggestions."""
    from parley.feedback import FeedbackStore, SuggestionStore

    settings = _settings(ctx.obj["config"])
    store = FeedbackStore(settings.data_dir / "feedback")

    if suggestion_id:
        record = SuggestionStore(settings.data_dir / "feedback").get(suggestion_id)
        if record is None:
            raise click.ClickException(f"Unknown suggestion: {suggestion_id}")
        console.print(f"\n[bold blue]Parley[/] — Suggestion {suggestion_id}\n")
        console.print(f"  Subject: {record.subject_id}  Channel: {record.channel_ref}")
        console.print(f"  Trigger: {record.trigger_kind.value}  Created: {record.created_at[:19]}\n")
        events = store.get_events(suggestion_id=suggestion_id)
        if not events:
            console.print("[yellow]No feedback recorded.[/]")
            return
        table = Table(title="Feedback")
        table.add_column("Time", style="dim")
        table.add_column("Action", style="cyan")
        table.add_column("Final text")
        for e in events:
            table.add_row(e.timestamp[:19], e.action.value, escape((e.final_text or "")[:60]))
        console.print(table)
        return

    counts = store.action_counts(subject_id)
    if not counts:
        console.print("[yellow]No feedback recorded.[/]")
        return

    table = Table(title="Feedback")
    table.add_column("Action", style="cyan")
    table.add_column("Count", justify="right")
    for action, count in sorted(counts.items(), key=lambda kv: kv[1], reverse=True):
        table.add_row(action, str(count))
    console.print(table)


# ── Style ────────────────────────────────────────────────────────────


@main.group()
def style():
    """Manage organization and user style settings."""


def _style_store(ctx: click.Context):
    from parley.style import StyleSettingsStore

    settings = _settings(ctx.find_root().obj["config"])
    return StyleSettingsStore(settings.data_dir / "style")


def _preference(
    tone: Optional[str],
    formality: Optional[str],
    use: tuple,
    avoid: tuple,
    guidance: Optional[str],
):
    from parley.style import StylePreference

    return StylePreference(
        tone=tone,
        formality=formality,
        preferred_phrases=tuple(use) or None,
        avoid_phrases=tuple(avoid) or None,
        custom_guidance=guidance,
    )


_style_options = [
    click.option("--tone", default=None),
    click.option("--formality", default=None),
    click.option("--use", multiple=True, help="Phrase to prefer (repeatable)"),
    click.option("--avoid", multiple=True, help="Phrase to avoid (repeatable)"),
    click.option("--guidance", default=None, help="Free-form guidance"),
]


def _with_style_options(func):
    for option in reversed(_style_options):
        func = option(func)
    return func


@style.command("show")
@click.argument("org_id")
@click.option("--user", "subject_id", default=None, help="Resolve for this user")
@click.pass_context
def style_show(ctx: click.Context, org_id: str, subject_id: Optional[str]):
    """Show the effective style for ORG_ID (and optionally a user)."""
    from parley.style import StyleResolver

    store = _style_store(ctx)
    effective = asyncio.run(StyleResolver(store).resolve(org_id, subject_id or ""))
    mode = asyncio.run(store.get_precedence_mode(org_id))

    console.print(f"\n[bold blue]Parley[/] — Style for {org_id}" + (f" / {subject_id}" if subject_id else ""))
    console.print(f"  Precedence: {mode.value if mode else 'unset'}\n")
    if effective.is_empty:
        console.print("[yellow]No style configured.[/]")
        return
    console.print(Panel(Text(effective.to_prompt()), title="Prompt section"))


@style.command("set-org")
@click.argument("org_id")
@click.option(
    "--precedence",
    default="fallback",
    type=click.Choice(["override", "layer", "fallback"]),
    show_default=True,
)
@_with_style_options
@click.pass_context
def style_set_org(
    ctx: click.Context,
    org_id: str,
    precedence: str,
    tone: Optional[str],
    formality: Optional[str],
    use: tuple,
    avoid: tuple,
    guidance: Optional[str],
):
    """Set the organization style for ORG_ID."""
    from parley.style import PrecedenceMode

    store = _style_store(ctx)
    store.set_org_style(
        org_id,
        _preference(tone, formality, use, avoid, guidance),
        PrecedenceMode(precedence),
    )
    console.print(f"  [green]v[/] Organization style saved ({precedence})")


@style.command("set-user")
@click.argument("org_id")
@click.argument("subject_id")
@_with_style_options
@click.pass_context
def style_set_user(
    ctx: click.Context,
    org_id: str,
    subject_id: str,
    tone: Optional[str],
    formality: Optional[str],
    use: tuple,
    avoid: tuple,
    guidance: Optional[str],
):
    """Set SUBJECT_ID's own style within ORG_ID."""
    store = _style_store(ctx)
    store.set_user_style(org_id, subject_id, _preference(tone, formality, use, avoid, guidance))
    console.print("  [green]v[/] User style saved")


@style.command("clear-user")
@click.argument("org_id")
@click.argument("subject_id")
@click.pass_context
def style_clear_user(ctx: click.Context, org_id: str, subject_id: str):
    """Remove SUBJECT_ID's style within ORG_ID."""
    if _style_store(ctx).delete_user_style(org_id, subject_id):
        console.print("  [green]v[/] User style removed")
    else:
        console.print("[yellow]No user style to remove.[/]")


# ── Serve ────────────────────────────────────────────────────────────


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True)
def serve(host: str, port: int):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("parley.api.main:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":
    main()
