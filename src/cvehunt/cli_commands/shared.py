"""Shared CLI app objects and rendering helpers."""

from datetime import date, datetime

import typer
from rich.console import Console
from rich.table import Table

from cvehunt.config import is_verbose
from cvehunt.modules.discovery.models import SourceFailure, SourceHealth
from cvehunt.modules.reconcile import EnrichedRecord
from cvehunt.utils.logging import configure_logging

app = typer.Typer(
    name="cvehunt",
    help="Multi-source CVE discovery and reconciliation",
    no_args_is_help=True,
)
console = Console()

SEVERITY_STYLES = {
    "CRITICAL": "bold red",
    "HIGH": "red",
    "MEDIUM": "yellow",
    "LOW": "green",
}


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Multi-source CVE discovery and reconciliation."""
    configure_logging(verbose or is_verbose(), console=Console(stderr=True))


def parse_date_option(value: str | None, option: str) -> date | None:
    """Parse a YYYY-MM-DD option value, exiting with a message on bad input."""
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        console.print(f"[red]Invalid {option} date {value!r}; expected YYYY-MM-DD[/red]")
        raise typer.Exit(2) from None


def severity_text(severity: str) -> str:
    style = SEVERITY_STYLES.get(severity)
    return f"[{style}]{severity}[/{style}]" if style else severity


def records_table(records: list[EnrichedRecord], limit: int | None = None) -> Table:
    table = Table(title=f"Vulnerabilities ({len(records)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Severity")
    table.add_column("CVSS", justify="right")
    table.add_column("Published")
    table.add_column("Sources")
    table.add_column("Status")
    table.add_column("Description", overflow="fold")
    shown = records if limit is None else records[:limit]
    for record in shown:
        table.add_row(
            record.display_id,
            severity_text(record.severity),
            f"{record.cvss_score:.1f}" if record.cvss_score is not None else "-",
            record.published.date().isoformat() if record.published else "-",
            ", ".join(record.sources),
            record.validation.status,
            record.description[:120],
        )
    return table


def health_table(health: list[SourceHealth]) -> Table:
    table = Table(title="Source health")
    table.add_column("Source", style="cyan")
    table.add_column("Healthy")
    table.add_column("Response", justify="right")
    table.add_column("Success rate", justify="right")
    table.add_column("Last error")
    for item in sorted(health, key=lambda h: h.source_name):
        table.add_row(
            item.source_name,
            "[green]yes[/green]" if item.healthy else "[red]no[/red]",
            f"{item.response_time:.2f}s",
            f"{item.success_rate:.0%}",
            item.last_error or "",
        )
    return table


def print_failures(errors: list[SourceFailure]) -> None:
    if not errors:
        return
    console.print("[bold]Source errors:[/bold]")
    for failure in errors:
        color = {"warning": "yellow", "error": "red"}.get(failure.severity, "bold red")
        retry = " (retryable)" if failure.retryable else ""
        console.print(f"  [{color}]{failure.source_name}[/{color}]: {failure.error}{retry}")
