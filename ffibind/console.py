#!/usr/bin/env python3

import json
import logging

from rich.console import Console as RichConsole
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from ffibind.diagnostics import Diagnostic, Severity


class Console:
    """Simple console wrapper focused on output."""

    def __init__(self, stderr: bool = False):
        self._rich = RichConsole(stderr=stderr)

    def print(self, *args, **kwargs):
        """Print using Rich console."""
        return self._rich.print(*args, **kwargs)

    def diagnostics_table(self, diagnostics: list[Diagnostic]) -> None:
        """Render diagnostics as a table, errors first."""
        if not diagnostics:
            return
        table = Table(title="Diagnostics", show_lines=False)
        table.add_column("Severity")
        table.add_column("Kind")
        table.add_column("Target")
        table.add_column("Location")
        table.add_column("Message", overflow="fold")
        ordered = sorted(diagnostics, key=lambda d: d.severity != Severity.ERROR)
        for d in ordered:
            style = "red" if d.is_error else "yellow"
            table.add_row(
                f"[{style}]{d.severity.value}[/{style}]",
                d.kind.value,
                d.target.value if d.target else "all",
                escape(d.location or ""),
                escape(d.message),
            )
        self._rich.print(table)

    def diagnostics_json(self, diagnostics: list[Diagnostic]) -> None:
        data = [d.model_dump(mode="json") for d in diagnostics]
        self._rich.print_json(json.dumps(data))


def setup_logging(verbose: bool = False) -> None:
    """Route log records through rich; -v enables debug output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=RichConsole(stderr=True), show_path=False)],
        force=True,
    )
