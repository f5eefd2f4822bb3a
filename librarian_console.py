# librarian_console.py
# GAL 26-10-02: Console output helpers for the librarian
# - Colored messages via rich (monochrome with -a)
# - INFO/WARN/ERROR keep the timestamped log-line format used by our other tools
# - DEBUG lines only when -d is given

from __future__ import annotations

import datetime as _dt
from typing import Optional

from rich.console import Console

# Message class → rich style
COLORS = {
    "prompt":  "bright_yellow",
    "heading": "bright_white",
    "help":    "bright_cyan",
    "ok":      "bright_green",
    "warn":    "yellow",
    "error":   "bright_red",
    "debug":   "magenta",
    "data":    "white",
}

_console = Console(highlight=False, soft_wrap=True)
DEBUG = False


def configure(monochrome: bool = False, debug: bool = False) -> None:
    """Apply the -a / -d startup flags."""
    global _console, DEBUG
    _console = Console(highlight=False, soft_wrap=True, no_color=monochrome)
    DEBUG = debug


def say(msg: str = "", color: str = "data", nocr: bool = False) -> None:
    style = COLORS.get(color, color)
    _console.print(msg, style=style, markup=False, end="" if nocr else "\n")


def _log(level: str, msg: str, ctx: Optional[str] = None, color: str = "data") -> None:
    """
    Emit a structured console line.
    Output:
        [2026-10-02 20:11:03][WARN][ctx=import] No palette data for slot 3.
    """
    ts = _dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    ctx_part = f"[ctx={ctx}] " if ctx else " "
    say(f"[{ts}][{level}]{ctx_part}{msg}", color)


def INFO(msg: str, ctx: Optional[str] = None): _log("INFO", msg, ctx, "ok")
def WARN(msg: str, ctx: Optional[str] = None): _log("WARN", msg, ctx, "warn")
def ERROR(msg: str, ctx: Optional[str] = None): _log("ERROR", msg, ctx, "error")


def dprint(msg: str, ctx: Optional[str] = None) -> None:
    """Chatty lines (SQL, URLs, parsed commands); silent unless debug is on."""
    if DEBUG:
        _log("DEBUG", msg, ctx, "debug")
