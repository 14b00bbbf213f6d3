"""``ocilayout tags REF``: list the tags of a layout."""

from __future__ import annotations

import typer
from rich.console import Console

from ocilayout.cli.commands._refs import layout_ref
from ocilayout.core.errors import NotFoundError
from ocilayout.core.ocidir import OCIDir

console = Console()


def tags_cmd(
    reference: str = typer.Argument(..., help="Layout reference, e.g. ocidir://./layout."),
) -> None:
    """Print one tag per line, sorted."""
    ref = layout_ref(reference)
    store = OCIDir()
    try:
        tags = store.tag_list(ref)
    except NotFoundError as err:
        console.print(f"[bold red]Not found:[/bold red] {err}")
        raise typer.Exit(code=1) from err
    for tag in tags:
        console.print(tag, highlight=False)
