# line_input.py
# GAL 26-09-28: Raw keystroke line editor for the librarian prompt
# - Reads bytes as they arrive (cbreak on POSIX, msvcrt on Windows)
# - Cursor editing, history recall, Home = headline, Tab = file: completion
# - poll() never blocks; read_line()/ask()/confirm() loop on it
# GAL 26-10-08: Key bytes are table driven per platform (POSIX vs Windows console)

"""
Editing model
    EditorState holds everything about the line being typed. The transition
    functions below (insert_char, delete_char, backspace, ...) change the state
    and return the text to echo so the terminal shows the same thing.
    LineEditor decodes bytes into transition names via KEY tables and
    ESC_SEQUENCES, runs them, and writes the echo.

Escape sequences are matched as the decimal byte values joined together,
e.g. ESC [ A → "279165".
"""

from __future__ import annotations

import codecs
import os
import re
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

from librarian_console import say

if os.name == "nt":
    import msvcrt
else:
    import select
    import termios
    import tty

# -----------------------------
# Key tables
# -----------------------------
POSIX_KEYS: Dict[str, Set[int]] = {"back": {127}, "tab": {9}, "enter": {10}}
WINDOWS_KEYS: Dict[str, Set[int]] = {"back": {8}, "tab": {9}, "enter": {13}}

ESC = 27
ESC_TERMINATORS = set(range(65, 73)) | {126}   # A..H, ~
ESC_MAX_LEN = 6
ESC_INTRODUCERS = {91, 79}                      # [, O

ESC_SEQUENCES = {
    "279165":    "HistoryPrev",   # ESC [ A
    "279166":    "HistoryNext",   # ESC [ B
    "279167":    "CursorRight",   # ESC [ C
    "279168":    "CursorLeft",    # ESC [ D
    "279172":    "Home",          # ESC [ H
    "279149126": "Home",          # ESC [ 1 ~
    "279151126": "Delete",        # ESC [ 3 ~
}

# msvcrt extended key codes (after \x00 / \xe0) → the VT sequence we decode
WINDOWS_EXTENDED = {
    72: b"\x1b[A", 80: b"\x1b[B", 77: b"\x1b[C", 75: b"\x1b[D",
    71: b"\x1b[1~", 83: b"\x1b[3~",
}

YES_NO_RE = re.compile(r"y/n", re.I)
LIST_WIDTH = 72

# -----------------------------
# State
# -----------------------------
@dataclass
class EditorState:
    prompt: str = "-> "
    color: str = "prompt"
    buffer: str = ""
    cursor: int = 0
    history: List[str] = field(default_factory=list)
    hptr: int = 0
    no_newline: bool = False     # don't echo a newline on Enter
    single_shot: bool = False    # transient prompt; never recorded in history
    prompt_shown: bool = False
    escape: List[int] = field(default_factory=list)

    def reset(self, prompt: str, color: str = "prompt", single_shot: bool = False,
              no_newline: bool = False) -> None:
        self.prompt, self.color = prompt, color
        self.buffer, self.cursor = "", 0
        self.single_shot, self.no_newline = single_shot, no_newline
        self.prompt_shown = False
        self.escape.clear()
        self.hptr = len(self.history)

# -----------------------------
# Transitions: change state, return echo text
# -----------------------------
def insert_char(state: EditorState, text: str) -> str:
    post = state.buffer[state.cursor:]
    state.buffer = state.buffer[:state.cursor] + text + post
    state.cursor += len(text)
    return text + post + "\b" * len(post)

def delete_char(state: EditorState, _=None) -> str:
    if state.cursor >= len(state.buffer):
        return ""
    post = state.buffer[state.cursor + 1:]
    state.buffer = state.buffer[:state.cursor] + post
    return post + " " + "\b" * (len(post) + 1)

def backspace(state: EditorState, _=None) -> str:
    if state.cursor == 0:
        return ""
    post = state.buffer[state.cursor:]
    state.cursor -= 1
    state.buffer = state.buffer[:state.cursor] + post
    return "\b" + post + " " + "\b" * (len(post) + 1)

def cursor_left(state: EditorState, _=None) -> str:
    if state.cursor == 0:
        return ""
    state.cursor -= 1
    return "\b"

def cursor_right(state: EditorState, _=None) -> str:
    if state.cursor >= len(state.buffer):
        return ""
    ch = state.buffer[state.cursor]
    state.cursor += 1
    return ch

def _replace_line(state: EditorState, text: str) -> str:
    old = len(state.buffer)
    echo = "\b" * state.cursor + " " * old + "\b" * old + text
    state.buffer, state.cursor = text, len(text)
    return echo

def history_prev(state: EditorState, _=None) -> str:
    if state.hptr <= 0:
        return ""
    state.hptr -= 1
    return _replace_line(state, state.history[state.hptr])

def history_next(state: EditorState, _=None) -> str:
    if state.hptr >= len(state.history):
        return ""
    state.hptr += 1
    text = state.history[state.hptr] if state.hptr < len(state.history) else ""
    return _replace_line(state, text)

def show_home(state: EditorState, headline: str = "") -> str:
    state.prompt_shown = False
    return "\n" + headline + "\n"

def redraw(state: EditorState, _=None) -> str:
    return "\r" + state.prompt + state.buffer + "\b" * (len(state.buffer) - state.cursor)

def list_dir(path: str) -> List[Tuple[str, bool]]:
    p = Path(path or ".")
    if not p.is_dir():
        return []
    return sorted((e.name, e.is_dir()) for e in p.iterdir())

def _narrow(prefix: str, names: List[str]) -> str:
    """Extend prefix one character at a time while every name agrees."""
    if not names or any(len(n) <= len(prefix) for n in names):
        return prefix
    nxt = names[0][len(prefix)]
    if all(n[len(prefix)] == nxt for n in names):
        return _narrow(prefix + nxt, names)
    return prefix

def _columns(names: List[str]) -> str:
    width = max(len(n) for n in names) + 2
    per_line = max(1, LIST_WIDTH // width)
    rows = [names[i:i + per_line] for i in range(0, len(names), per_line)]
    return "\n".join("".join(n.ljust(width) for n in row).rstrip() for row in rows)

def tab_complete(state: EditorState, lister: Callable[[str], List[Tuple[str, bool]]] = list_dir) -> str:
    """Complete the file:<partial> token that ends at the cursor."""
    m = re.search(r"file:(\S*)$", state.buffer[:state.cursor], re.I)
    if not m:
        return ""
    folder, base = os.path.split(m.group(1))
    entries = [(n, d) for n, d in lister(folder or ".") if n.startswith(base)]
    if not entries:
        return "\a"
    if len(entries) == 1:
        name, is_dir = entries[0]
        return insert_char(state, name[len(base):] + ("/" if is_dir else ""))
    common = _narrow(base, [n for n, _ in entries])
    if len(common) > len(base):
        return insert_char(state, common[len(base):])
    state.prompt_shown = False
    return "\n" + _columns([n + ("/" if d else "") for n, d in entries]) + "\n"

def commit(state: EditorState) -> Tuple[bool, str]:
    """Enter key. Returns (line_ready, echo)."""
    if not state.buffer:
        if YES_NO_RE.search(state.prompt):
            return True, "" if state.no_newline else "\n"
        state.prompt_shown = False
        return False, "\n"
    if not state.single_shot and (not state.history or state.history[-1] != state.buffer):
        state.history.append(state.buffer)
    state.hptr = len(state.history)
    state.cursor = len(state.buffer)
    return True, "" if state.no_newline else "\n"

TRANSITIONS: Dict[str, Callable] = {
    "Insert":      insert_char,
    "Delete":      delete_char,
    "Backspace":   backspace,
    "CursorLeft":  cursor_left,
    "CursorRight": cursor_right,
    "HistoryPrev": history_prev,
    "HistoryNext": history_next,
    "Home":        show_home,
    "Tab":         tab_complete,
}

# -----------------------------
# Key sources
# -----------------------------
class PosixKeySource:
    """stdin in cbreak mode; read_available() returns whatever bytes are waiting."""

    def __init__(self, fd: Optional[int] = None):
        self.fd = sys.stdin.fileno() if fd is None else fd
        self._saved = None

    def __enter__(self):
        self._saved = termios.tcgetattr(self.fd)
        tty.setcbreak(self.fd)
        return self

    def __exit__(self, *exc):
        if self._saved is not None:
            termios.tcsetattr(self.fd, termios.TCSADRAIN, self._saved)
            self._saved = None

    def read_available(self) -> bytes:
        data = b""
        while select.select([self.fd], [], [], 0)[0]:
            chunk = os.read(self.fd, 64)
            if not chunk:
                break
            data += chunk
        return data


class WindowsKeySource:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return None

    def read_available(self) -> bytes:
        data = b""
        while msvcrt.kbhit():
            ch = msvcrt.getwch()
            if ch in ("\x00", "\xe0"):
                data += WINDOWS_EXTENDED.get(ord(msvcrt.getwch()), b"")
            else:
                data += ch.encode("utf-8")
        return data


def platform_source():
    """Key source and key table for this OS."""
    if os.name == "nt":
        return WindowsKeySource(), WINDOWS_KEYS
    return PosixKeySource(), POSIX_KEYS

# -----------------------------
# Line editor
# -----------------------------
class LineEditor:
    def __init__(self, source, keys: Dict[str, Set[int]] = POSIX_KEYS, out=None,
                 headline: Callable[[], str] = lambda: "", lister=list_dir,
                 idle: float = 0.02):
        self.source = source
        self.keys = keys
        self.out = out
        self.headline = headline
        self.lister = lister
        self.idle = idle
        self.state = EditorState()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = b""

    def _write(self, text: str) -> None:
        if not text:
            return
        out = self.out or sys.stdout
        out.write(text)
        out.flush()

    def _show_prompt(self) -> None:
        st = self.state
        say(st.prompt, st.color, nocr=True)
        self._write(st.buffer + "\b" * (len(st.buffer) - st.cursor))
        st.prompt_shown = True

    def _run(self, name: str, arg=None) -> None:
        if name == "Home":
            arg = self.headline()
        elif name == "Tab":
            arg = self.lister
        self._write(TRANSITIONS[name](self.state, arg))
        if not self.state.prompt_shown:
            self._show_prompt()

    def start(self, prompt: str, color: str = "prompt", single_shot: bool = False,
              no_newline: bool = False) -> None:
        self.state.reset(prompt, color, single_shot, no_newline)

    def feed(self, data: bytes) -> bool:
        """Process bytes; True once Enter commits the line. Extra bytes wait for the next line."""
        data = self._pending + data
        self._pending = b""
        for i, b in enumerate(data):
            if self._key(b):
                self._pending = data[i + 1:]
                return True
        return False

    def _key(self, b: int) -> bool:
        st = self.state
        if st.escape and len(st.escape) == 1 and b not in ESC_INTRODUCERS:
            # lone ESC: drop it, the key after it is an ordinary key
            st.escape.clear()
        if st.escape:
            st.escape.append(b)
            if b in ESC_TERMINATORS or len(st.escape) > ESC_MAX_LEN:
                seq = "".join(str(x) for x in st.escape)
                st.escape.clear()
                name = ESC_SEQUENCES.get(seq)
                if name:
                    self._run(name)
            return False
        if b == ESC:
            st.escape.append(b)
            return False
        if b in self.keys["enter"]:
            ready, echo = commit(st)
            self._write(echo)
            if not ready and not st.prompt_shown:
                self._show_prompt()
            return ready
        if b in self.keys["back"]:
            self._run("Backspace")
            return False
        if b in self.keys["tab"]:
            self._run("Tab")
            return False
        if b < 32 or b == 127:
            return False
        text = self._decoder.decode(bytes([b]))
        if text:
            self._run("Insert", text)
        return False

    def poll(self) -> bool:
        """Non-blocking: show the prompt if needed, consume waiting bytes."""
        if not self.state.prompt_shown:
            self._show_prompt()
        return self.feed(self.source.read_available())

    def take_line(self) -> str:
        line = self.state.buffer
        self.state.buffer, self.state.cursor = "", 0
        return line

    def read_line(self, prompt: str, color: str = "prompt", single_shot: bool = False,
                  no_newline: bool = False) -> str:
        self.start(prompt, color, single_shot, no_newline)
        while not self.poll():
            time.sleep(self.idle)
        return self.take_line()

    def ask(self, prompt: str, color: str = "prompt") -> str:
        """Single-shot prompt for confirmations; not recorded in history."""
        return self.read_line(prompt, color, single_shot=True).strip()

    def confirm(self, prompt: str) -> bool:
        return answer_is_yes(self.ask(prompt), prompt)


def answer_is_yes(answer: str, prompt: str) -> bool:
    """y/yes → True; empty answer takes the capitalized default in the prompt ([Y/n])."""
    answer = answer.strip().lower()
    if not answer:
        return "Y/n" in prompt
    return answer in ("y", "yes")
