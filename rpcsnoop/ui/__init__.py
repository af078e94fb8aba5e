"""
rpcsnoop Terminal UI
====================
Rich console setup, theme and small message helpers.
"""

from __future__ import annotations

from typing import IO, Optional

from rich.console import Console
from rich.theme import Theme

from rpcsnoop import __version__

# ── Theme ────────────────────────────────────────────────────────────────────

SNOOP_THEME = Theme({
    "request": "cyan",
    "success": "green",
    "error": "red",
    "dropped": "white",
    "warning": "yellow",
    "title": "bold bright_green",
    "dim": "dim white",
})


def make_console(color: bool = True, file: Optional[IO[str]] = None, stderr: bool = False) -> Console:
    """Create a console for traffic output.

    Colored consoles always emit ANSI codes, even when piped, so the log
    can be paged with ``less -R``. Without color no escape codes are
    written at all.
    """
    return Console(
        theme=SNOOP_THEME,
        file=file,
        stderr=stderr,
        force_terminal=True if color else None,
        color_system="standard" if color else None,
        highlight=False,
        markup=False,
        emoji=False,
        soft_wrap=True,
    )


console = make_console()
err_console = make_console(stderr=True)


def set_color(enabled: bool) -> None:
    """Swap the module consoles for color / no-color variants."""
    global console, err_console
    console = make_console(color=enabled)
    err_console = make_console(color=enabled, stderr=True)


# ── Banner ───────────────────────────────────────────────────────────────────

def show_banner(endpoint: str, bind_address: str, port: int) -> None:
    """One-line startup banner."""
    console.print(f"rpcsnoop v{__version__}", style="title", end=" ")
    console.print(f"listening on {bind_address}:{port}, forwarding to {endpoint}", style="dim")


# ── Messages ─────────────────────────────────────────────────────────────────

def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="warning")


def print_error(text: str) -> None:
    err_console.print(f"❌ {text}", style="error")
