"""Console output for galwind.

Usage:
    from galwind.console import console

    console.set_rank(transport.rank)
    console.message(0, "Windspeed: 483.2 MaxDelay 0.061")
    console.warn("No gas was kicked")
    console.debug("WIND_WEIGHT round 3: 2 of 12 left", detail="Max ngb=44, min ngb=31")

`message(0, ...)` only prints on the root rank; `message(1, ...)` prints on
every rank with the rank prefixed. Output goes to stderr.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Optional

from rich.console import Console as RichConsole
from rich.panel import Panel

# level -> (marker, marker style)
_LEVELS: dict[str, tuple[str, str]] = {
    "info": ("•", "blue"),
    "warn": ("⚠", "yellow"),
    "error": ("✗", "bold red"),
    "debug": ("·", "dim"),
}


class Console:
    """Rank-aware logging with rich output."""

    __slots__ = ("_console", "_rank", "_debug")

    def __init__(self) -> None:
        self._console = RichConsole(stderr=True)
        self._rank = 0
        self._debug = False

    @property
    def rank(self) -> int:
        return self._rank

    def set_rank(self, rank: int) -> None:
        self._rank = int(rank)

    def set_debug(self, enabled: bool) -> None:
        self._debug = bool(enabled)

    def _emit(self, level: str, message: str, detail: Optional[str]) -> None:
        marker, style = _LEVELS[level]
        body = f"[dim]{message}[/dim]" if level == "debug" else message
        suffix = f" [dim]{detail}[/dim]" if detail else ""
        self._console.print(f"[{style}]{marker}[/{style}] {body}{suffix}")

    @contextmanager
    def spinner(self, message: str):
        """Spinner on the root rank while the block runs."""
        if self._rank != 0:
            yield
            return
        with self._console.status(f"[bold cyan]{message}", spinner="dots"):
            yield

    def message(self, where: int, message: str, *, detail: Optional[str] = None) -> None:
        """Print from the root rank only (`where == 0`) or from every rank."""
        if where == 0:
            if self._rank == 0:
                self._emit("info", message, detail)
            return
        self._emit("info", f"[{self._rank}] {message}", detail)

    def info(self, message: str, *, detail: Optional[str] = None) -> None:
        self._emit("info", message, detail)

    def warn(self, message: str, *, detail: Optional[str] = None) -> None:
        self._emit("warn", message, detail)

    def error(self, message: str, *, detail: Optional[str] = None) -> None:
        self._emit("error", f"[{self._rank}] {message}", detail)

    def debug(self, message: str, *, detail: Optional[str] = None) -> None:
        if self._debug and self._rank == 0:
            self._emit("debug", message, detail)

    def header(self, title: str, **fields: str) -> None:
        """Key-value summary panel, root rank only."""
        if self._rank != 0:
            return
        width = max((len(k) for k in fields), default=0)
        lines = [f"[bold]{k.ljust(width)}[/bold]  {v}" for k, v in fields.items()]
        self._console.print(Panel("\n".join(lines), title=f"[cyan]{title}[/cyan]", border_style="blue", expand=False))


console = Console()
