"""Source health and capability CLI command."""

from rich.table import Table

from .deps import cli_module
from .shared import app, console, health_table


@app.command()
def sources() -> None:
    """Health-check every configured source and list its capabilities."""
    cli = cli_module()

    async def run_checks():
        async with cli.DiscoveryCoordinator.from_settings(cli.DiscoverySettings.from_config()) as coordinator:
            health = await coordinator.health_check_all()
            return coordinator.adapters, health

    adapters, health = cli.safe_async_run(run_checks())

    table = Table(title="Sources")
    table.add_column("Source", style="cyan")
    table.add_column("Name")
    table.add_column("Enabled")
    table.add_column("Prior", justify="right")
    table.add_column("History")
    table.add_column("Realtime")
    table.add_column("Max years", justify="right")
    table.add_column("Req/min", justify="right")
    for adapter in adapters:
        table.add_row(
            adapter.source_name,
            adapter.display_name,
            "yes" if adapter.enabled else "[dim]no[/dim]",
            f"{adapter.reliability_score:.2f}",
            "yes" if adapter.supports_historical_data else "no",
            "yes" if adapter.supports_realtime_updates else "no",
            str(adapter.max_timeframe_years),
            str(adapter.requests_per_minute),
        )
    console.print(table)
    if health:
        console.print(health_table(health))
