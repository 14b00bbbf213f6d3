"""ocilayout CLI, a thin typer interface over the layout store.

Provides the ``ocilayout`` command with subcommands to inspect references,
list tags and referrers, and garbage collect a layout.  Output uses Rich.
"""
