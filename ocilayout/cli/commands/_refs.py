"""Reference handling shared by the store commands."""

from __future__ import annotations

import typer
from rich.console import Console

from ocilayout.core.errors import InvalidReferenceError
from ocilayout.models.reference import SCHEME_OCIDIR, Ref, parse

console = Console()


def layout_ref(value: str) -> Ref:
    """Parse *value* and require an ``ocidir://`` reference, exiting otherwise."""
    try:
        ref = parse(value)
    except InvalidReferenceError as err:
        console.print(f"[bold red]Invalid reference:[/bold red] {err}")
        raise typer.Exit(code=2) from err
    if ref.scheme != SCHEME_OCIDIR:
        console.print(f"[bold red]Unsupported reference:[/bold red] {value}")
        console.print("[dim]Only ocidir:// layouts are supported, registry access is not available.[/dim]")
        raise typer.Exit(code=2)
    return ref
