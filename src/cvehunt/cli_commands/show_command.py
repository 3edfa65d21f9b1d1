"""Single CVE lookup CLI command."""

import json

import typer
from rich.panel import Panel

from cvehunt.modules.reconcile import EnrichedRecord

from .deps import cli_module
from .shared import app, console, severity_text


def _render(record: EnrichedRecord) -> None:
    score = f"{record.cvss_score:.1f}" if record.cvss_score is not None else "-"
    lines = [
        f"[bold]Severity:[/bold] {severity_text(record.severity)}  [bold]CVSS:[/bold] {score}",
        f"[bold]Vector:[/bold] {record.cvss_vector or '-'}",
        f"[bold]Published:[/bold] {record.published.isoformat() if record.published else '-'}",
        f"[bold]Modified:[/bold] {record.modified.isoformat() if record.modified else '-'}",
        f"[bold]Sources:[/bold] {', '.join(record.sources)} (primary {record.primary_source})",
        f"[bold]Validation:[/bold] {record.validation.status} "
        f"(confidence {record.validation.confidence:.2f}, {record.metadata.enrichment_level})",
        "",
        record.description,
    ]
    if record.metadata.cwe_ids:
        lines.append(f"\n[bold]CWE:[/bold] {', '.join(record.metadata.cwe_ids)}")
    if record.metadata.affected_products:
        lines.append(f"[bold]Products:[/bold] {', '.join(record.metadata.affected_products[:10])}")
    console.print(Panel("\n".join(lines), title=record.display_id, expand=False))
    for conflict in record.conflicts:
        values = ", ".join(f"{s}={v}" for s, v in conflict.values.items())
        console.print(
            f"  [yellow]{conflict.severity} conflict[/yellow] on {conflict.field}: {values}"
            f" -> {conflict.resolved_value}"
        )
    for ref in record.metadata.references[:10]:
        console.print(f"  [dim]{ref}[/dim]")


@app.command()
def show(
    cve_id: str = typer.Argument(..., help="CVE identifier, e.g. CVE-2021-44228"),
    as_json: bool = typer.Option(False, "--json", help="Print the record as JSON"),
    deadline: float | None = typer.Option(None, "--deadline", help="Time limit in seconds"),
) -> None:
    """Look one CVE up in every source and print the reconciled record."""
    cli = cli_module()

    async def run_lookup():
        async with cli.DiscoveryCoordinator.from_settings(cli.DiscoverySettings.from_config()) as coordinator:
            return await coordinator.get_details(cve_id, deadline=deadline)

    record = cli.safe_async_run(run_lookup())
    if record is None:
        console.print(f"[yellow]{cve_id} was not found in any source.[/yellow]")
        raise typer.Exit(1)
    if as_json:
        typer.echo(json.dumps(record.to_dict(), indent=2))
        return
    _render(record)
