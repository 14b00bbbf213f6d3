"""``ocilayout parse REF``: show how a reference is normalized."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from ocilayout.core.errors import InvalidReferenceError
from ocilayout.models.reference import parse

console = Console()


def parse_cmd(
    reference: str = typer.Argument(..., help="Image reference, e.g. alpine or ocidir://./layout:v1."),
) -> None:
    """Parse a reference and print its normalized fields."""
    try:
        ref = parse(reference)
    except InvalidReferenceError as err:
        console.print(f"[bold red]Invalid reference:[/bold red] {err}")
        raise typer.Exit(code=1) from err

    table = Table(title=ref.common_name())
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("scheme", ref.scheme)
    if ref.path:
        table.add_row("path", ref.path)
    else:
        table.add_row("registry", ref.registry)
        table.add_row("repository", ref.repository)
    table.add_row("tag", ref.tag or "[dim]-[/dim]")
    table.add_row("digest", ref.digest or "[dim]-[/dim]")
    console.print(table)
