"""
Check command: report whether external dependencies are installed.
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from dehost.external.base import ExternalTool
from dehost.external.kraken import Kraken2

console = Console()

REQUIRED_TOOLS: tuple[type[ExternalTool], ...] = (Kraken2,)


def check_dependencies() -> None:
    """
    Verify that required external tools are on PATH.

    Exits with code 1 if any tool is missing.
    """
    table = Table(title="External dependencies", show_header=True, header_style="bold")
    table.add_column("Tool")
    table.add_column("Status")
    table.add_column("Location / version")

    missing = []
    for tool in REQUIRED_TOOLS:
        if tool.check_available():
            version = tool().version() or "version unknown"
            table.add_row(
                tool.TOOL_NAME,
                "[green]found[/green]",
                f"{tool.get_executable()} ({version})",
            )
        else:
            missing.append(tool)
            table.add_row(tool.TOOL_NAME, "[red]missing[/red]", tool.INSTALL_HINT)

    console.print(table)

    if missing:
        console.print(
            f"\n[red]{len(missing)} required tool(s) missing.[/red] "
            "Install them and make sure they are on your PATH."
        )
        raise typer.Exit(code=1)

    console.print("\n[green]All dependencies found.[/green]")
