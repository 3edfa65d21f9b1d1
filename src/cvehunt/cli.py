"""cvehunt CLI - multi-source CVE discovery and reconciliation."""

from importlib import import_module

from cvehunt.cli_commands.shared import app, console
from cvehunt.config import DiscoverySettings
from cvehunt.modules.discovery.orchestrator import DiscoveryCoordinator
from cvehunt.modules.store import CveStore
from cvehunt.utils.async_utils import safe_async_run

_COMMAND_MODULES = (
    "discover_command",
    "sources_command",
    "show_command",
    "reliability_command",
)

for _name in _COMMAND_MODULES:
    import_module(f"cvehunt.cli_commands.{_name}")


@app.command()
def version() -> None:
    """Show the installed cvehunt version."""
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as pkg_version

    try:
        current_version = pkg_version("cvehunt")
    except PackageNotFoundError:
        current_version = "0.0.0+unknown"

    console.print(f"cvehunt {current_version}")


def main():
    """Entry point for the CLI."""
    app()


__all__ = [
    "CveStore",
    "DiscoveryCoordinator",
    "DiscoverySettings",
    "app",
    "console",
    "main",
    "safe_async_run",
]
