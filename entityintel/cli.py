"""
entityintel CLI - Command Line Interface

Entry point for all entity intelligence operations.
"""

import logging

import click
from rich.logging import RichHandler
from tabulate import tabulate

from entityintel import __version__
from entityintel.config import config


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _pct(value: float) -> str:
    return f"{value * 100:.0f}%"


@click.group()
@click.version_option(version=__version__, prog_name="entityintel")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, verbose):
    """entityintel - Entity Intelligence for Government Contracting.

    Classifies awards, scores entity health, maps relationships, generates
    insights and keeps entity data fresh through scheduled enrichment.
    """
    ctx.ensure_object(dict)
    _setup_logging(verbose)


# =============================================================================
# Init & Config Commands
# =============================================================================

@cli.command()
@click.option("--drop", is_flag=True, help="Drop existing tables before creating")
def init(drop):
    """Initialize the database and create all tables."""
    from sqlalchemy import text
    from entityintel.database import init_db, drop_db, get_engine

    click.echo("Initializing entityintel database...")

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        url = config.database_url
        click.echo(f"  Connected to: {url.split('@')[1] if '@' in url else url}")
    except Exception as e:
        click.echo(click.style(f"  Database connection failed: {e}", fg="red"))
        click.echo("\nCheck your config.yaml database settings or environment variables.")
        raise SystemExit(1)

    if drop:
        if click.confirm("This will DELETE all existing data. Continue?"):
            click.echo("  Dropping existing tables...")
            drop_db()
        else:
            click.echo("Aborted.")
            return

    click.echo("  Creating tables...")
    init_db()
    click.echo(click.style("Database initialized successfully!", fg="green"))


@cli.command("config")
@click.option("--show", is_flag=True, help="Show current configuration")
def show_config(show):
    """View configuration."""
    if not show:
        click.echo("Edit config.yaml directly or set environment variables.")
        click.echo("Use 'entityintel config --show' to view current settings.")
        return

    url = config.database_url
    click.echo("\n=== Current Configuration ===\n")
    click.echo(f"Database URL: {url.split('@')[1] if '@' in url else url}")
    click.echo(f"OpenCorporates Token: {'[SET]' if config.opencorporates_token else '[NOT SET]'}")
    click.echo(f"OpenCorporates URL: {config.opencorporates_url}")
    click.echo(f"USAspending URL: {config.usaspending_url}")
    click.echo(f"API Timeout: {config.api_timeout}s")
    click.echo(f"\nFlywheel Interval: {config.flywheel_interval_minutes} minutes")
    click.echo(f"Stale After: {config.stale_days} days")
    for key, value in config.flywheel_batch_sizes.items():
        click.echo(f"  {key}: {value}")
    click.echo(f"\nAudit Interval: {config.audit_interval_hours} hours")
    for key, value in config.audit_batch_sizes.items():
        click.echo(f"  {key}: {value}")
    click.echo(f"Orphan Match Threshold: {config.orphan_match_threshold}")
    click.echo(f"Quality Normalization: {config.quality_normalization}")
    click.echo(f"Insight Dedup: {'on' if config.insight_dedupe else 'off'}")


# =============================================================================
# Classification Commands
# =============================================================================

@cli.group()
def classify():
    """Contract classification commands."""
    pass


@classify.command("text")
@click.argument("description")
@click.option("--naics", help="NAICS code")
@click.option("--psc", help="Product/service code")
def classify_text(description, naics, psc):
    """Classify a free-text award description."""
    from entityintel.intelligence import classify as run_classify

    result = run_classify(description, naics_code=naics, psc_code=psc)

    click.echo(f"\nPrimary Category: {click.style(result.primary_category, bold=True)}")
    click.echo(f"Secondary: {', '.join(result.secondary_categories) or '-'}")
    click.echo(f"Capabilities: {', '.join(result.capabilities) or '-'}")
    click.echo(f"Confidence: {result.confidence:.2f}")


@classify.command("run")
@click.option("--batch-size", "-b", default=100, help="Contracts per batch")
@click.option("--limit", "-n", type=int, help="Stop after this many contracts")
def classify_run(batch_size, limit):
    """Classify all contracts that have no classification yet."""
    from entityintel.intelligence import classify_all_pending

    result = classify_all_pending(batch_size=batch_size, limit=limit)
    click.echo(f"Classified {result['classified']} contracts ({result['errors']} errors)")


@classify.command("distribution")
def classify_distribution():
    """Show stored classifications per category."""
    from entityintel.intelligence import get_category_distribution

    distribution = get_category_distribution()
    if not distribution:
        click.echo("No classifications yet. Run 'entityintel classify run' first.")
        return

    rows = sorted(distribution.items(), key=lambda item: item[1], reverse=True)
    click.echo(tabulate(rows, headers=["Category", "Contracts"], tablefmt="simple"))


# =============================================================================
# Health Score Commands
# =============================================================================

@cli.group()
def scores():
    """Entity health score commands."""
    pass


@scores.command("compute")
@click.argument("entity_id", type=int)
def scores_compute(entity_id):
    """Recompute and store one entity's health score."""
    from entityintel.intelligence import calculate_and_store_health_score

    metrics = calculate_and_store_health_score(entity_id)
    if metrics is None:
        click.echo(click.style(f"Entity {entity_id} not found", fg="red"))
        raise SystemExit(1)

    trend_color = {"up": "green", "down": "red"}.get(metrics.trend_direction.value, "white")
    rows = [
        ["Overall", metrics.overall_score],
        ["Contract velocity", metrics.contract_velocity],
        ["Grant success", metrics.grant_success],
        ["Relationship density", metrics.relationship_density],
        ["Market diversification", metrics.market_diversification],
        ["Trend", click.style(metrics.trend_direction.value, fg=trend_color)],
    ]
    click.echo(tabulate(rows, headers=["Metric", "Score"], tablefmt="simple"))


@scores.command("backfill")
@click.option("--limit", "-n", default=25, help="Entities to score")
@click.option("--all", "score_all", is_flag=True, help="Recompute every canonical entity")
def scores_backfill(limit, score_all):
    """Score entities that have no health score yet."""
    from entityintel.intelligence import score_pending, calculate_all_health_scores

    if score_all:
        result = calculate_all_health_scores()
    else:
        result = score_pending(limit=limit)
    click.echo(f"Calculated {result['calculated']} scores ({result['errors']} errors)")


@scores.command("distribution")
def scores_distribution():
    """Show stored health scores per 20-point bucket."""
    from entityintel.intelligence import get_health_score_distribution

    rows = [[b["range"], b["count"]] for b in get_health_score_distribution()]
    click.echo(tabulate(rows, headers=["Range", "Entities"], tablefmt="simple"))


# =============================================================================
# Relationship Commands
# =============================================================================

@cli.group()
def relationships():
    """Teaming partner, competitor and market shift analysis."""
    pass


def _partner_table(partners) -> str:
    rows = [
        [p.entity_id, p.entity_name[:40], p.shared_agencies, p.shared_naics, f"{p.strength_score:.2f}"]
        for p in partners
    ]
    return tabulate(
        rows,
        headers=["ID", "Name", "Agencies", "NAICS", "Strength"],
        tablefmt="simple",
    )


def _echo_shift(shift) -> None:
    trend_color = {"expanding": "green", "contracting": "red"}.get(shift.trend.value, "white")
    click.echo(f"Trend: {click.style(shift.trend.value, fg=trend_color)}")
    click.echo(f"Velocity change: {shift.contract_velocity_change:+d} contracts")
    click.echo(f"New markets: {', '.join(shift.new_markets) or '-'}")
    click.echo(f"Lost markets: {', '.join(shift.lost_markets) or '-'}")


@relationships.command("partners")
@click.argument("entity_id", type=int)
def relationships_partners(entity_id):
    """Discover and store teaming partners."""
    from entityintel.intelligence import discover_teaming_partners

    partners = discover_teaming_partners(entity_id)
    if not partners:
        click.echo("No teaming partners found.")
        return
    click.echo(_partner_table(partners))


@relationships.command("shift")
@click.argument("entity_id", type=int)
def relationships_shift(entity_id):
    """Compare agency markets across the last two 90-day windows."""
    from entityintel.intelligence import detect_market_shift

    _echo_shift(detect_market_shift(entity_id))


@relationships.command("competitors")
@click.argument("entity_id", type=int)
def relationships_competitors(entity_id):
    """List same-state competitors ranked by contract value."""
    from entityintel.intelligence import find_competitors

    competitors = find_competitors(entity_id)
    if not competitors:
        click.echo("No competitors found.")
        return
    click.echo(_partner_table(competitors))


@relationships.command("network")
@click.argument("entity_id", type=int)
def relationships_network(entity_id):
    """Run all relationship analyses for an entity."""
    from entityintel.intelligence import analyze_network

    network = analyze_network(entity_id)

    click.echo(f"\n=== Network for entity {entity_id} ===\n")
    click.echo(f"Network strength: {_pct(network.network_strength)}")

    click.echo(f"\nTeaming partners ({len(network.teaming_partners)}):")
    if network.teaming_partners:
        click.echo(_partner_table(network.teaming_partners))

    click.echo(f"\nCompetitors ({len(network.competitors)}):")
    if network.competitors:
        click.echo(_partner_table(network.competitors))

    click.echo("\nMarket shift:")
    _echo_shift(network.market_shift)


# =============================================================================
# Insight Commands
# =============================================================================

SEVERITY_COLORS = {"high": "red", "medium": "yellow", "low": "white"}


@cli.group()
def insights():
    """Insight generation and review."""
    pass


@insights.command("generate")
@click.argument("entity_id", type=int)
@click.option("--no-dedupe", is_flag=True, help="Store insights even if already recorded today")
def insights_generate(entity_id, no_dedupe):
    """Generate insights for one entity."""
    from entityintel.insights import generate_entity_insights

    drafts = generate_entity_insights(entity_id, dedupe=False if no_dedupe else None)
    if not drafts:
        click.echo("No insights for this entity.")
        return

    for draft in drafts:
        color = SEVERITY_COLORS.get(draft.severity.value, "white")
        click.echo(
            f"\n[{click.style(draft.severity.value.upper(), fg=color)}] "
            f"{click.style(draft.title, bold=True)} ({draft.insight_type.value})"
        )
        click.echo(f"  {draft.description}")
        for item in draft.action_items:
            click.echo(f"  - {item}")


@insights.command("batch")
@click.option("--limit", "-n", default=50, help="Entities to process")
def insights_batch(limit):
    """Generate insights for a batch of canonical entities."""
    from entityintel.insights import generate_insights_batch

    result = generate_insights_batch(limit=limit, progress=True)
    click.echo(
        f"Processed {result['processed']} entities, "
        f"{result['insights_generated']} new insights "
        f"({result['insights_matched']} matched, {result['errors']} errors)"
    )


@insights.command("list")
@click.option("--entity", "-e", type=int, help="Only insights for this entity")
@click.option("--limit", "-n", default=20, help="Number of insights to show")
def insights_list(entity, limit):
    """List recent insights."""
    from entityintel.insights import list_insights

    rows = []
    for i in list_insights(entity_id=entity, limit=limit):
        color = SEVERITY_COLORS.get(i.severity.value, "white")
        rows.append([
            i.id,
            i.scope_value,
            click.style(i.severity.value.upper(), fg=color),
            i.insight_type.value,
            i.title[:50],
            i.created_at.strftime("%Y-%m-%d %H:%M") if i.created_at else "-",
        ])

    if not rows:
        click.echo("No insights found.")
        return

    click.echo(tabulate(
        rows,
        headers=["ID", "Entity", "Severity", "Type", "Title", "Created"],
        tablefmt="simple",
    ))


# =============================================================================
# Audit Commands
# =============================================================================

@cli.group()
def audit():
    """Data quality audit commands."""
    pass


@audit.command("run")
def audit_run():
    """Run every audit pass once."""
    from entityintel.intelligence import run_daily_audit, get_data_quality_score

    results = run_daily_audit()
    rows = [[r.type, r.found, r.fixed] for r in results]
    click.echo(tabulate(rows, headers=["Pass", "Found", "Fixed"], tablefmt="simple"))
    click.echo(f"\nData quality score: {get_data_quality_score()}/100")


@audit.command("score")
@click.option(
    "--normalization",
    type=click.Choice(["ratio", "fixed"]),
    help="Override the configured normalization",
)
def audit_score(normalization):
    """Show the aggregate data quality score."""
    from entityintel.intelligence import get_data_quality_score

    score = get_data_quality_score(normalization=normalization)
    color = "green" if score >= 80 else "yellow" if score >= 50 else "red"
    click.echo(f"Data quality score: {click.style(str(score), fg=color)}/100")


# =============================================================================
# Flywheel Commands
# =============================================================================

@cli.group()
def flywheel():
    """Enrichment flywheel commands."""
    pass


@flywheel.command("once")
def flywheel_once():
    """Run a single enrichment cycle now."""
    from entityintel.enrichment import EnrichmentFlywheel, CycleError

    result = EnrichmentFlywheel().run_cycle()
    if isinstance(result, CycleError):
        click.echo(click.style(f"Cycle failed: {result.error}", fg="red"))
        raise SystemExit(1)

    click.echo(
        f"Enriched {result.entities_enriched} entities, "
        f"scored {result.health_scores_calculated} in {result.duration_ms} ms"
    )
    if result.enrichment_failures:
        click.echo(click.style(f"{result.enrichment_failures} enrichment sources failed", fg="yellow"))


@flywheel.command("start")
def flywheel_start():
    """Run the flywheel and the daily audit until interrupted."""
    from entityintel.scheduler import start_scheduler

    click.echo("Starting scheduler...")
    click.echo(f"Flywheel interval: {config.flywheel_interval_minutes} minutes")
    click.echo(f"Audit interval: {config.audit_interval_hours} hours")

    start_scheduler(foreground=True)


@flywheel.command("status")
def flywheel_status():
    """Show pending flywheel work."""
    from datetime import timedelta
    from sqlalchemy import func, select
    from entityintel.database import get_session, Entity, utcnow
    from entityintel.intelligence.health import count_unscored

    cutoff = utcnow() - timedelta(days=config.stale_days)
    with get_session() as session:
        stale = session.scalar(
            select(func.count(Entity.id)).where(Entity.updated_at < cutoff)
        ) or 0

    click.echo(f"Stale entities (> {config.stale_days} days): {stale}")
    click.echo(f"Unscored entities: {count_unscored()}")
    click.echo(f"Interval: {config.flywheel_interval_minutes} minutes")


if __name__ == "__main__":
    cli()
