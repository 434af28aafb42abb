"""User-facing output for the CLI."""

import json
from typing import Any

from rich.console import Console


class OutputFormatter:
    """Prints status messages, tables and JSON documents.

    Messages are suppressed in quiet mode; in JSON mode only structured
    documents (and errors) are printed so stdout stays machine readable.
    """

    def __init__(self, json_output: bool = False, quiet: bool = False):
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console(soft_wrap=True, highlight=False)
        self.err_console = Console(stderr=True, soft_wrap=True, highlight=False)

    @property
    def silent(self) -> bool:
        """True when informational messages should not be shown."""
        return self.quiet or self.json_output

    def print(self, message: str = "") -> None:
        if self.silent:
            return
        self.console.print(message, markup=False)

    def info(self, message: str) -> None:
        if self.silent:
            return
        self.console.print(message, markup=False)

    def success(self, message: str) -> None:
        if self.silent:
            return
        self.console.print(message, style="green", markup=False)

    def warning(self, message: str) -> None:
        if self.silent:
            return
        self.err_console.print(message, style="yellow", markup=False)

    def error(self, message: str) -> None:
        # Errors are shown even in quiet mode
        if self.json_output:
            self.output_json({"status": "error", "error": message})
            return
        self.err_console.print(f"Error: {message}", style="bold red", markup=False)

    def output_json(self, data: Any) -> None:
        self.console.print(json.dumps(data, default=str), markup=False)

    def table(self, rows: list[tuple[str, ...]]) -> None:
        """Print rows as left-aligned columns."""
        if self.silent or not rows:
            return
        widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
        for row in rows:
            cells = [cell.ljust(width) for cell, width in zip(row, widths)]
            self.console.print("  ".join(cells).rstrip(), markup=False)
