# src/fluxrest/core/logging.py
"""Console logging built on rich."""

import time
from contextlib import contextmanager
from enum import IntEnum
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from rich.console import Console
from rich.table import Table


class LogLevel(IntEnum):
    DEBUG = 10
    INFO = 20
    WARN = 30
    ERROR = 40


def _styled(style: str) -> Callable[[Any], str]:
    return lambda text: f"[{style}]{text}[/{style}]"


# Style helpers for names that show up in log lines.
color_palette: Dict[str, Callable[[Any], str]] = {
    "schema": _styled("bold blue"),
    "table": _styled("cyan"),
    "view": _styled("magenta"),
    "column": _styled("green"),
    "sql": _styled("dim"),
    "method": _styled("bold yellow"),
}


class Logger:
    """Small level-filtered logger with section headers and indentation."""

    def __init__(self, level: LogLevel = LogLevel.INFO, console: Optional[Console] = None):
        self.level = level
        self.console = console or Console()
        self._indent = 0

    def set_level(self, level: LogLevel) -> None:
        self.level = level

    def _emit(self, level: LogLevel, prefix: str, message: str) -> None:
        if level < self.level:
            return
        self.console.print(f"{'  ' * self._indent}{prefix}{message}")

    def debug(self, message: str) -> None:
        self._emit(LogLevel.DEBUG, "[dim]DEBUG[/dim] ", message)

    def info(self, message: str) -> None:
        self._emit(LogLevel.INFO, "", message)

    def success(self, message: str) -> None:
        self._emit(LogLevel.INFO, "[green]✓[/green] ", message)

    def warn(self, message: str) -> None:
        self._emit(LogLevel.WARN, "[yellow]![/yellow] ", message)

    def error(self, message: str) -> None:
        self._emit(LogLevel.ERROR, "[bold red]✗[/bold red] ", message)

    def section(self, title: str) -> None:
        if LogLevel.INFO < self.level:
            return
        self.console.print()
        self.console.rule(f"[bold]{title}[/bold]")

    @contextmanager
    def indented(self) -> Iterator[None]:
        self._indent += 1
        try:
            yield
        finally:
            self._indent -= 1

    @contextmanager
    def timed(self, label: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = (time.perf_counter() - start) * 1000
            self._emit(LogLevel.INFO, "", f"{label} [dim]({elapsed:.1f} ms)[/dim]")

    def table(self, headers: Sequence[str], rows: List[Sequence[Any]]) -> None:
        if LogLevel.INFO < self.level:
            return
        table = Table(*headers)
        for row in rows:
            table.add_row(*(str(cell) for cell in row))
        self.console.print(table)


log = Logger()
