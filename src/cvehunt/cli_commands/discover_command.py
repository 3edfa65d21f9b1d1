"""CVE discovery CLI command."""

import json
from pathlib import Path

import typer

from cvehunt.modules.discovery.errors import AllSourcesFailedError
from cvehunt.modules.discovery.models import DiscoveryOptions, DiscoveryResult

from .deps import cli_module
from .shared import app, console, health_table, parse_date_option, print_failures, records_table


def _print_result(result: DiscoveryResult, limit: int) -> None:
    console.print(records_table(result.records, limit=limit))
    if len(result.records) > limit:
        console.print(f"[dim]... {len(result.records) - limit} more not shown[/dim]")
    counts = ", ".join(f"{name}={count}" for name, count in sorted(result.source_counts.items()))
    console.print(f"[bold]Source counts:[/bold] {counts or 'none'}")
    report = result.report
    console.print(
        f"[bold]Reconciled:[/bold] {report.metrics.total_raw} raw -> {report.metrics.unique} unique"
        f" ({report.duplicates_detected} duplicates, {len(report.conflicts)} conflicts)"
    )
    metrics = result.metrics
    console.print(
        f"[dim]{metrics.successful_sources}/{metrics.parallel_sources} sources in "
        f"{metrics.total_time:.2f}s, cache hit rate {metrics.cache_hit_rate:.0%}[/dim]"
    )
    if metrics.rate_limited_sources:
        console.print(
            f"[yellow]Rate limited:[/yellow] {', '.join(metrics.rate_limited_sources)}"
        )
    print_failures(result.errors)


@app.command()
def discover(
    years: int = typer.Option(1, "--years", "-y", help="Look back this many years"),
    start: str | None = typer.Option(None, "--start", help="Window start (YYYY-MM-DD)"),
    end: str | None = typer.Option(None, "--end", help="Window end (YYYY-MM-DD)"),
    severity: list[str] = typer.Option([], "--severity", "-s", help="Severity filter (repeatable)"),
    keyword: list[str] = typer.Option([], "--keyword", "-k", help="Keyword filter (repeatable)"),
    tech: list[str] = typer.Option([], "--tech", "-t", help="Technology filter (repeatable)"),
    max_results: int | None = typer.Option(None, "--max-results", help="Per-source result cap"),
    prioritize: list[str] = typer.Option([], "--prioritize", "-p", help="Sources to try first"),
    deadline: float | None = typer.Option(None, "--deadline", help="Overall time limit in seconds"),
    db: Path | None = typer.Option(None, "--db", help="Store results in this SQLite database"),
    as_json: bool = typer.Option(False, "--json", help="Print reconciled records as JSON"),
    show: int = typer.Option(50, "--show", help="Rows to print in the table"),
) -> None:
    """Discover CVEs across every healthy source and reconcile them."""
    cli = cli_module()
    try:
        options = DiscoveryOptions(
            timeframe_years=years,
            start_date=parse_date_option(start, "--start"),
            end_date=parse_date_option(end, "--end"),
            severities=tuple(severity),
            keywords=tuple(keyword),
            technologies=tuple(tech),
            max_results_per_source=max_results,
            prioritize_sources=tuple(prioritize),
        )
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(2) from exc

    async def run_discovery() -> DiscoveryResult:
        async with cli.DiscoveryCoordinator.from_settings(cli.DiscoverySettings.from_config()) as coordinator:
            return await coordinator.discover_all(options, deadline=deadline)

    if not as_json:
        console.print("[blue]Discovering CVEs...[/blue]")
    try:
        result = cli.safe_async_run(run_discovery())
    except AllSourcesFailedError as exc:
        console.print(f"[red]{exc}[/red]")
        print_failures(exc.result.errors)
        raise typer.Exit(1) from exc

    if as_json:
        typer.echo(json.dumps([r.to_dict() for r in result.records], indent=2))
    else:
        _print_result(result, show)
        if any(not h.healthy for h in result.source_health):
            console.print(health_table(result.source_health))

    if db is not None:
        store = cli.CveStore(db)
        try:
            summary = store.upsert_many(result.records)
        finally:
            store.close()
        if not as_json:
            console.print(
                f"[green]Stored {summary.new} new, {summary.updated} updated, "
                f"{summary.unchanged} unchanged in {db}[/green]"
            )
