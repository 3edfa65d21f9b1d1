"""Source reliability CLI command."""

import typer
from rich.table import Table

from .deps import cli_module
from .shared import app, console


@app.command()
def reliability(
    trends: bool = typer.Option(False, "--trends", help="Also print per-source trend analysis"),
) -> None:
    """Probe every source and print the reliability report."""
    cli = cli_module()

    async def run_checks():
        async with cli.DiscoveryCoordinator.from_settings(cli.DiscoverySettings.from_config()) as coordinator:
            await coordinator.health_check_all()
            coordinator.reliability.evaluate_all()
            return coordinator.reliability

    service = cli.safe_async_run(run_checks())
    report = service.report()

    summary = report.summary
    console.print(
        f"[bold]{summary.total_sources} sources[/bold], average reliability "
        f"{summary.average_reliability:.2f}, {summary.healthy_sources} healthy, "
        f"{summary.sources_needing_attention} need attention"
    )
    table = Table(title="Reliability ranking")
    table.add_column("Source", style="cyan")
    table.add_column("Final", justify="right")
    table.add_column("Base", justify="right")
    table.add_column("Dynamic", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Avg response", justify="right")
    table.add_column("Evaluations", justify="right")
    for metrics in report.rankings:
        table.add_row(
            metrics.source_name,
            f"{metrics.final_score:.3f}",
            f"{metrics.base_score:.2f}",
            f"{metrics.dynamic_score:.3f}",
            f"{metrics.success_rate:.0%}",
            f"{metrics.average_response_time:.2f}s",
            str(metrics.evaluation_count),
        )
    console.print(table)

    for rec in report.recommendations:
        color = {"high": "red", "medium": "yellow"}.get(rec.priority, "dim")
        console.print(
            f"  [{color}]{rec.priority}[/{color}] {rec.source_name}: {rec.issue} - {rec.recommendation}"
        )

    if trends:
        for name in service.sources():
            analysis = service.analyze_trends(name)
            console.print(
                f"[bold]{name}[/bold]: reliability {analysis.reliability_trend}, "
                f"performance {analysis.performance_trend}"
            )
            for issue in analysis.issues:
                console.print(f"  [yellow]{issue}[/yellow]")
