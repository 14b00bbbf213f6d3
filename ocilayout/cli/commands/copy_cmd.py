"""``ocilayout copy SRC TGT``: copy an image between layouts."""

from __future__ import annotations

import typer
from rich.console import Console

from ocilayout.cli.commands._refs import layout_ref
from ocilayout.core.copier import copy_image
from ocilayout.core.errors import NotFoundError, OciLayoutError
from ocilayout.core.ocidir import OCIDir

console = Console()


def copy_cmd(
    source: str = typer.Argument(..., help="Source reference, e.g. ocidir://./src:v1."),
    target: str = typer.Argument(..., help="Target reference, e.g. ocidir://./dst:v1."),
    referrers: bool = typer.Option(
        False,
        "--referrers",
        "-r",
        help="Also copy referrers of every copied manifest.",
    ),
    artifact_type: str = typer.Option(
        "",
        "--artifact-type",
        "-t",
        help="Restrict copied referrers to this artifact type.",
    ),
) -> None:
    """Copy a manifest with its blobs, child manifests and optionally referrers."""
    src = layout_ref(source)
    tgt = layout_ref(target)
    store = OCIDir()
    try:
        desc = copy_image(store, src, store, tgt, referrers=referrers, artifact_type=artifact_type)
    except NotFoundError as err:
        console.print(f"[bold red]Not found:[/bold red] {err}")
        raise typer.Exit(code=1) from err
    except OciLayoutError as err:
        console.print(f"[bold red]Copy failed:[/bold red] {err}")
        raise typer.Exit(code=1) from err
    finally:
        store.close(tgt)
    console.print(f"[bold green]Copied[/bold green] {src.common_name()} -> {tgt.common_name()}")
    console.print(f"[bold]{desc.digest}[/bold]", highlight=False)
