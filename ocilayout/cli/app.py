"""Main Typer application, registers all CLI commands.

Entry point: ``ocilayout`` (configured via pyproject.toml console scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from ocilayout.cli.commands.copy_cmd import copy_cmd
from ocilayout.cli.commands.gc_cmd import gc_cmd
from ocilayout.cli.commands.parse_cmd import parse_cmd
from ocilayout.cli.commands.referrers_cmd import referrers_cmd
from ocilayout.cli.commands.tags_cmd import tags_cmd
from ocilayout.config import config

app = typer.Typer(
    name="ocilayout",
    help="ocilayout: content addressable storage for OCI image layouts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def setup(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging before any command runs."""
    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


# Register subcommands
app.command(name="parse", help="Parse and normalize an image reference.")(parse_cmd)
app.command(name="tags", help="List the tags of an OCI layout.")(tags_cmd)
app.command(name="referrers", help="List the referrers of a manifest.")(referrers_cmd)
app.command(name="gc", help="Garbage collect unreferenced blobs from a layout.")(gc_cmd)
app.command(name="copy", help="Copy an image between OCI layouts.")(copy_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
