"""``ocilayout referrers REF``: list the referrers of a manifest.

Referrers are read from the fallback tag index of the subject digest, so
they are only found for layouts written through this store or a tool
using the same tag scheme.
"""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console

from ocilayout.cli.commands._refs import layout_ref
from ocilayout.config import config
from ocilayout.core.errors import NotFoundError, OciLayoutError
from ocilayout.core.ocidir import OCIDir

console = Console()


def _parse_annotations(values: list[str]) -> dict[str, str]:
    annotations: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"annotation must be key=value, got {item!r}", param_hint="--annotation")
        annotations[key] = value
    return annotations


def referrers_cmd(
    reference: str = typer.Argument(..., help="Subject reference, e.g. ocidir://./layout:v1."),
    artifact_type: str = typer.Option(
        "",
        "--artifact-type",
        "-t",
        help="Only list referrers of this artifact type.",
    ),
    annotation: Optional[list[str]] = typer.Option(
        None,
        "--annotation",
        "-a",
        help="Only list referrers with this annotation (key=value, repeatable).",
    ),
    platform: Optional[str] = typer.Option(
        None,
        "--platform",
        "-p",
        help="Platform to resolve when the subject is an index, e.g. linux/amd64.",
    ),
) -> None:
    """List referrers of a manifest as a table."""
    ref = layout_ref(reference)
    annotations = _parse_annotations(annotation or [])
    store = OCIDir()
    try:
        rl = store.referrer_list(
            ref,
            platform=platform or config.default_platform,
            artifact_type=artifact_type,
            annotations=annotations,
        )
    except NotFoundError as err:
        console.print(f"[bold red]Not found:[/bold red] {err}")
        raise typer.Exit(code=1) from err
    except OciLayoutError as err:
        console.print(f"[bold red]Referrer lookup failed:[/bold red] {err}")
        raise typer.Exit(code=1) from err

    if not rl.descriptors:
        console.print(f"[dim]No referrers for {rl.subject.common_name()}[/dim]")
        return

    console.print(f"[bold]Referrers of {rl.subject.common_name()}[/bold]", soft_wrap=True)
    for desc in rl.descriptors:
        console.print(
            f"[cyan]{desc.digest}[/cyan]  [green]{desc.artifact_type or '-'}[/green]  {desc.media_type}  {desc.size}",
            soft_wrap=True,
            highlight=False,
        )
