"""``ocilayout gc REF``: remove unreferenced blobs from a layout."""

from __future__ import annotations

import typer
from rich.console import Console

from ocilayout.cli.commands._refs import layout_ref
from ocilayout.core.errors import NotFoundError
from ocilayout.core.ocidir import OCIDir

console = Console()


def gc_cmd(
    reference: str = typer.Argument(..., help="Layout reference, e.g. ocidir://./layout."),
) -> None:
    """Run mark and sweep garbage collection on a layout."""
    ref = layout_ref(reference)
    store = OCIDir()
    try:
        removed = store.collect(ref)
    except NotFoundError as err:
        console.print(f"[bold red]Not found:[/bold red] {err}")
        raise typer.Exit(code=1) from err
    console.print(f"[bold green]Removed {removed} blob(s)[/bold green] from {ref.path}")
