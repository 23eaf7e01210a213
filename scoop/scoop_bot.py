"""Command line interface for the curation engine."""

import asyncio
import json
import logging
import sys
from datetime import date, datetime
from typing import Optional

import click

# Heavy dependencies are imported inside the commands so that the CLI
# module stays cheap to import (and to patch in tests).

logger = logging.getLogger(__name__)

DATE = click.DateTime(formats=["%Y-%m-%d"])


def _engine(ctx: click.Context):
    from scoop.core.curation import CurationEngine
    from scoop.models.settings import Settings

    settings = Settings(debug=ctx.obj.get("debug", False))
    return CurationEngine(settings)


def _day(value: Optional[datetime]) -> Optional[date]:
    return value.date() if value else None


def _echo_transition(result) -> None:
    icon = {"transitioned": "✅", "skipped": "⏭️ ", "already_run": "🔁"}[result.outcome.value]
    line = f"{icon} {result.outcome.value}"
    if result.campaign_date:
        line += f" [{result.campaign_date}]"
    if result.to_status:
        line += f" -> {result.to_status.value}"
    if result.reason:
        line += f": {result.reason}"
    click.echo(line)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """St. Cloud Scoop curation engine CLI.

    Syncs events, ingests and scores articles, fills newsletter sections
    and moves daily campaigns through review.
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=log_level, force=True)
    logger.debug("Debug mode enabled")


@cli.command("sync-events")
@click.option("--start-date", type=DATE, help="Override window start (YYYY-MM-DD)")
@click.option("--end-date", type=DATE, help="Override window end (YYYY-MM-DD)")
@click.pass_context
def sync_events(ctx: click.Context, start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    """Reconcile local events with the events feed."""
    engine = _engine(ctx)
    summary = asyncio.run(engine.sync_events(_day(start_date), _day(end_date)))

    click.echo(
        f"📅 fetched={summary.fetched} new={summary.new} updated={summary.updated} "
        f"errors={summary.errors} deactivated={summary.deactivated} "
        f"summaries={summary.summaries_generated}"
    )
    if summary.failed_days:
        click.echo(f"⚠️  Failed days: {', '.join(summary.failed_days)}")
    if summary.budget_exhausted:
        click.echo(
            f"⏱️  Budget exhausted after {summary.batches_completed}/{summary.batches_total} batches"
        )
    if summary.error:
        click.echo(f"❌ {summary.error}")
        sys.exit(1)


@cli.command()
@click.option("--date", "day", type=DATE, help="Campaign date (defaults to the upcoming issue)")
@click.pass_context
def ingest(ctx: click.Context, day: Optional[datetime]) -> None:
    """Ingest recent RSS articles into a campaign."""
    engine = _engine(ctx)
    summary = asyncio.run(engine.ingest_articles(_day(day)))
    click.echo(
        f"📰 feeds={summary.feeds} fetched={summary.fetched} new={summary.new} errors={summary.errors}"
    )


@cli.command()
@click.argument("day", type=DATE)
@click.pass_context
def process(ctx: click.Context, day: datetime) -> None:
    """Score, deduplicate, select and fact-check the campaign for DAY."""
    engine = _engine(ctx)
    summary = asyncio.run(engine.process_campaign(day.date()))

    click.echo(f"\n📋 Campaign {summary.campaign_date}\n")
    click.echo(f"Scored: {summary.scoring.scored} ({summary.scoring.failed} failed)")
    click.echo(
        f"Duplicates retired: {summary.dedup.duplicates_retired}"
        f"{' (dedup failed open)' if summary.dedup.failed_open else ''}"
    )
    for section, count in summary.selected.items():
        click.echo(f"  {section}: {count} selected")
    click.echo(
        f"Fact-check: {summary.fact_check.passed} passed, {summary.fact_check.failed} failed, "
        f"{summary.fact_check.regenerated} regenerated"
    )
    click.echo(f"Subject line: {summary.subject_line or '(none)'}")
    for stage, error in summary.stage_errors.items():
        click.echo(f"❌ {stage}: {error}")
    if summary.stage_errors:
        sys.exit(1)


@cli.command("review-check")
@click.pass_context
def review_check(ctx: click.Context) -> None:
    """Scheduled draft -> in_review check (time-gated, once per day)."""
    engine = _engine(ctx)
    _echo_transition(asyncio.run(engine.run_review_check()))


@cli.command("submit-review")
@click.argument("day", type=DATE)
@click.pass_context
def submit_review(ctx: click.Context, day: datetime) -> None:
    """Move the campaign for DAY from draft to in_review."""
    engine = _engine(ctx)
    _echo_transition(asyncio.run(engine.submit_for_review(day.date())))


@cli.command()
@click.argument("day", type=DATE)
@click.option("--force", is_flag=True, help="Approve even if not every article is verified")
@click.pass_context
def approve(ctx: click.Context, day: datetime, force: bool) -> None:
    """Approve the campaign for DAY."""
    engine = _engine(ctx)
    _echo_transition(engine.approve(day.date(), force=force))


@cli.command("mark-sent")
@click.argument("day", type=DATE)
@click.pass_context
def mark_sent(ctx: click.Context, day: datetime) -> None:
    """Record that the campaign for DAY was sent."""
    engine = _engine(ctx)
    _echo_transition(engine.mark_sent(day.date()))


@cli.command()
@click.argument("day", type=DATE)
@click.pass_context
def archive(ctx: click.Context, day: datetime) -> None:
    """Archive the campaign for DAY."""
    engine = _engine(ctx)
    _echo_transition(engine.archive(day.date()))


@cli.command()
@click.argument("day", type=DATE)
@click.pass_context
def status(ctx: click.Context, day: datetime) -> None:
    """Show state, selections and readiness of the campaign for DAY."""
    engine = _engine(ctx)
    report = engine.status(day.date())
    if report is None:
        click.echo(f"❌ No campaign for {day.date()}")
        sys.exit(1)
    click.echo(json.dumps(report, indent=2, default=str))


@cli.command("import-records")
@click.argument("kind", type=click.Choice(["dining", "getaways", "road_work"]))
@click.argument("file", type=click.Path(exists=True))
@click.pass_context
def import_records(ctx: click.Context, kind: str, file: str) -> None:
    """Import KIND records from a JSON array in FILE."""
    with open(file, encoding="utf-8") as f:
        try:
            records = json.load(f)
        except json.JSONDecodeError as e:
            click.echo(f"❌ Invalid JSON in {file}: {e}")
            sys.exit(1)
    if not isinstance(records, list):
        click.echo("❌ Expected a JSON array of records")
        sys.exit(1)

    engine = _engine(ctx)
    try:
        count = engine.import_records(kind, records)
    except ValueError as e:
        click.echo(f"❌ Import failed: {e}")
        sys.exit(1)
    click.echo(f"✅ Imported {count} {kind} records")


@cli.command()
def config() -> None:
    """Show current configuration."""
    try:
        from scoop.models.settings import Settings

        settings = Settings()
        click.echo("\n📋 Curation Engine Configuration\n")
        click.echo(f"Debug Mode: {settings.debug}")
        click.echo(f"Log Level: {settings.log_level}")
        click.echo(f"Database: {settings.database_path}")
        click.echo(f"Timezone: {settings.timezone}")

        click.echo("\n🔑 Secrets:")
        for name, value in (
            ("OpenRouter", settings.openrouter_api_key),
            ("Cron secret", settings.cron_secret),
            ("Operator token", settings.operator_token),
        ):
            click.echo(f"  {name}: {'✅ Configured' if value else '❌ Missing'}")

        click.echo("\n📡 Content Sources:")
        click.echo(f"  Events feed: {settings.events_feed_url}")
        click.echo(f"  RSS Feeds: {len(settings.feed_list())} configured")
        for i, url in enumerate(settings.feed_list(), 1):
            click.echo(f"    {i}. {url}")

        click.echo("\n⏰ Review schedule:")
        click.echo(
            f"  {'enabled' if settings.review_schedule_enabled else 'disabled'} at "
            f"{settings.review_time} (±{settings.schedule_window_minutes} min)"
        )
    except ValueError as e:
        click.echo(f"❌ Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
