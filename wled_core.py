# wled_core.py
# GAL 26-09-21: Core Model v1.0 shared helpers for import/export/show
# - Canonical field orders for presets, segments and playlists
# - Deterministic preset formatter (key order + type coercion + segment padding)
# - Duplicate fingerprint, Pid renumbering, playlist reference rewrite
# GAL 26-10-04: Word-set helpers for Tag/Group, slot file naming

"""
Core Model v1.0: WLED preset body → stored Pdata

WLED presets.json layout
- "0": {}                        → reserved sentinel, never stored
- "<pid>": {on, n, ql, bri, transition, mainseg, ledmap, seg:[...]}  → Type "preset"
- "<pid>": {on, n, ql, playlist:{ps, dur, transition, r, repeat, end}} → Type "playlist"

Stored Pdata is the text `"<pid>":{...}` so an export is just the stored texts joined
inside one object with the "0" sentinel in front.

Formatting rules:
- fixed key order per level; keys we don't know are kept, after the known ones
- BOOL_KEYS render true/false, NUMBER_KEYS render unquoted, everything else quoted
- segment arrays padded with {"stop":0} to SEGMENT_COUNT entries (device wants 32)
"""

from __future__ import annotations

import datetime as _dt
import json
import re
from typing import Dict, Iterable, List, Optional, Tuple

# -----------------------------
# Errors shared by every module
# -----------------------------
class LibrarianError(Exception):
    """Base for errors reported to the user without ending the session."""

class CommandError(LibrarianError):
    """Malformed command, unknown verb or option, bad option value."""

class ResourceError(LibrarianError):
    """File missing/unreadable, invalid JSON, bad source document."""

class DeviceError(ResourceError):
    """Device unreachable or rejecting requests after retries."""

class IntegrityError(LibrarianError):
    """Operation on a Lid that doesn't exist, destructive command without a filter."""

class SchemaError(LibrarianError):
    """Datastore doesn't match the expected schema (fatal at startup)."""

# -----------------------------
# Canonical key orders
# -----------------------------
PRESET_KEYS = ["on", "n", "ql", "bri", "transition", "mainseg", "ledmap", "seg"]
PLAYLIST_KEYS = ["on", "n", "ql", "playlist"]
PLAYLIST_BODY_KEYS = ["ps", "dur", "transition", "r", "repeat", "end"]
# keys that start a new output line inside the playlist object
PLAYLIST_NEWLINE_KEYS = {"dur", "transition", "r"}

# Segment keys, one list per output line
SEGMENT_KEY_LINES = [
    ["id", "start", "stop", "grp", "spc", "of", "on", "bri", "frz"],
    ["col", "fx", "sx", "ix", "pal", "rev", "c1", "c2", "c3", "sel"],
    ["set", "n", "o1", "o2", "o3", "si", "m12", "mi", "cct"],
]

BOOL_KEYS = {
    "on", "rev", "frz", "r", "sel", "mi", "nl.on", "rY", "mY", "tp",
    "send", "sgrp", "rgrp", "nn", "live",
}

NUMBER_KEYS = {
    "id", "start", "stop", "grp", "spc", "of", "bri", "col", "fx", "sx", "ix",
    "pal", "c1", "c2", "c3", "set", "o1", "o2", "o3", "si", "m12", "cct",
    "transition", "tt", "tb", "ps", "psave", "pl", "pdel", "nl.dur", "nl.mode",
    "nl.tbri", "lor", "rnd", "rpt", "mainseg", "startY", "stopY", "rem", "recv",
    "w", "h", "lc", "rgbw", "wv", "ledmap", "dur", "repeat", "end",
}

SEGMENT_COUNT = 32
PLACEHOLDER_SEGMENT = '{"stop":0}'
PLACEHOLDERS_PER_LINE = 10
TAB = "   "

# Custom palette slots: segment "pal" 247..256 ↔ palette0.json..palette9.json
PALETTE_RANGE = range(247, 257)
LEDMAP_RANGE = range(0, 10)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# -----------------------------
# Normalization helpers
# -----------------------------
def _as_number(value):
    """Return an int/float for numeric-looking input, else None."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        s = value.strip()
        try:
            return int(s)
        except ValueError:
            pass
        try:
            return float(s)
        except ValueError:
            return None
    return None

def _truthy(value) -> bool:
    if isinstance(value, str):
        s = value.strip().lower()
        if s in ("true", "yes", "on"):
            return True
        n = _as_number(s)
        return bool(n and n > 0)
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value > 0
    return bool(value)

def _as_text(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return json.dumps(value)
    return str(value)

def _kind(path: str) -> str:
    leaf = path.rsplit(".", 1)[-1]
    if path in BOOL_KEYS or (path not in NUMBER_KEYS and leaf in BOOL_KEYS):
        return "bool"
    if path in NUMBER_KEYS or leaf in NUMBER_KEYS:
        return "number"
    return "string"

def _render(path: str, value) -> str:
    """Render one value with the type coercion of its key."""
    if isinstance(value, dict):
        inner = ",".join(f"{json.dumps(str(k))}:{_render(f'{path}.{k}', v)}" for k, v in value.items())
        return "{" + inner + "}"
    if isinstance(value, list):
        return "[" + ",".join(_render(path, v) for v in value) + "]"
    if value is None:
        return "null"
    kind = _kind(path)
    if kind == "bool":
        return "true" if _truthy(value) else "false"
    if kind == "number":
        n = _as_number(value)
        if n is not None:
            return json.dumps(n)
    return json.dumps(_as_text(value), ensure_ascii=False)

def _pair(key: str, value) -> str:
    return f"{json.dumps(key)}:{_render(key, value)}"

def _ordered(obj: Dict, order: List[str], last: Optional[str] = None) -> List[str]:
    """Known keys in order, then unknown keys in encounter order. `last` is left out."""
    keys = [k for k in order if k in obj and k != last]
    keys += [k for k in obj if k not in order]
    return keys

# -----------------------------
# Segment / playlist writers
# -----------------------------
def is_placeholder(seg) -> bool:
    return isinstance(seg, dict) and set(seg) == {"stop"}

def _segment_text(seg: Dict) -> str:
    known = {k for line in SEGMENT_KEY_LINES for k in line}
    lines = []
    for line_keys in SEGMENT_KEY_LINES:
        parts = [_pair(k, seg[k]) for k in line_keys if k in seg]
        if parts:
            lines.append(",".join(parts))
    extra = [_pair(k, v) for k, v in seg.items() if k not in known]
    if extra:
        if lines:
            lines[-1] = lines[-1] + "," + ",".join(extra)
        else:
            lines.append(",".join(extra))
    return "{" + (",\n" + TAB).join(lines) + "}"

def _segments_text(segs: list) -> str:
    real = [s for s in segs if not is_placeholder(s)]
    rows = []
    for seg in real:
        rows.append(_segment_text(seg) if isinstance(seg, dict) else _render("seg", seg))
    pad = SEGMENT_COUNT - len(real)
    while pad > 0:
        n = min(pad, PLACEHOLDERS_PER_LINE)
        rows.append(",".join([PLACEHOLDER_SEGMENT] * n))
        pad -= n
    return "[\n" + TAB + (",\n" + TAB).join(rows) + "]"

def _playlist_text(pl: Dict) -> str:
    out = ""
    for k in _ordered(pl, PLAYLIST_BODY_KEYS):
        if out:
            out += ",\n" + TAB if k in PLAYLIST_NEWLINE_KEYS else ","
        out += _pair(k, pl[k])
    return "{" + out + "}"

# -----------------------------
# Canonicalizer
# -----------------------------
def canonicalize(body, pid) -> Optional[str]:
    """
    Format one preset/playlist body as stored Pdata: `"<pid>":{...}`.
    Accepts the decoded body (dict) or its JSON text. Returns None if the
    body isn't a JSON object or the result doesn't re-parse.
    """
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return None
    if not isinstance(body, dict):
        return None

    if "playlist" in body:
        order, last = PLAYLIST_KEYS, "playlist"
    else:
        order, last = PRESET_KEYS, "seg"

    parts = [_pair(k, body[k]) for k in _ordered(body, order, last)]
    if last in body:
        value = body[last]
        if last == "seg" and isinstance(value, dict):
            value = [value]
        if last == "seg" and isinstance(value, list):
            parts.append(f'"seg":{_segments_text(value)}')
        elif last == "playlist" and isinstance(value, dict):
            parts.append(f'"playlist":{_playlist_text(value)}')
        else:
            parts.append(_pair(last, value))

    text = f'"{pid}":{{' + ",".join(parts) + "}"
    ok, _ = validate_json("{" + text + "}")
    return text if ok else None

def compact_pdata(body, pid) -> str:
    """Unformatted Pdata (import with reformat disabled)."""
    return f'"{pid}":' + json.dumps(body, separators=(",", ":"), ensure_ascii=False)

def validate_json(text: str) -> Tuple[bool, str]:
    """Return (ok, reason)."""
    try:
        json.loads(text)
    except ValueError as e:
        return False, str(e)
    return True, "ok"

def preset_type(body) -> str:
    return "playlist" if isinstance(body, dict) and "playlist" in body else "preset"

def unwrap_pdata(pdata: str) -> str:
    """Strip the leading `"<pid>":` from stored Pdata."""
    return re.sub(r'^\s*"\d+"\s*:', "", pdata, count=1)

def pdata_body(pdata: str) -> Dict:
    return json.loads(unwrap_pdata(pdata))

# -----------------------------
# Duplicate fingerprint
# -----------------------------
_SEG_RE = re.compile(r'"seg":\[.+\]', re.S)

def fingerprint(pdata: str, ptype: str) -> str:
    """
    Substring of stored Pdata used to find near-duplicates:
      playlist → from "playlist": onward
      preset   → the "seg":[...] text, else everything after the Pid prefix
    """
    if ptype == "playlist":
        i = pdata.find('"playlist":')
        if i >= 0:
            return pdata[i:]
    else:
        m = _SEG_RE.search(pdata)
        if m:
            return m.group(0)
    return pdata[pdata.find(":") + 1:]

# -----------------------------
# Renumbering
# -----------------------------
def renumber_pdata(pdata: str, new_pid: int) -> str:
    return re.sub(r'^\s*"\d+"', f'"{new_pid}"', pdata, count=1)

# "ps" is a list, or a bare number for a one-entry playlist
_PS_RE = re.compile(r'"ps":\s*(?:\[([^\]]*)\]|(\d+))')

def rewrite_playlist_refs(pdata: str, id_map: Dict[int, int]) -> str:
    """Apply old→new Pid mapping to a playlist's "ps" list. Unmapped numbers stay."""
    def _swap(m):
        if m.group(2) is not None:
            old = int(m.group(2))
            return f'"ps":{id_map[old]}' if old in id_map else m.group(0)
        items = [s.strip() for s in m.group(1).split(",") if s.strip()]
        if not any(s.isdigit() and int(s) in id_map for s in items):
            return m.group(0)
        items = [str(id_map.get(int(s), s)) if s.isdigit() else s for s in items]
        return '"ps":[' + ",".join(items) + "]"
    return _PS_RE.sub(_swap, pdata)

# -----------------------------
# Palette / ledmap slots
# -----------------------------
def palette_file(plnum: int) -> str:
    return f"palette{256 - int(plnum)}.json"

def ledmap_file(mnum: int) -> str:
    return f"ledmap{int(mnum)}.json"

def palette_refs(body) -> List[int]:
    """Custom palette numbers (247..256) used by any segment, in first-use order."""
    refs = []
    segs = body.get("seg") if isinstance(body, dict) else None
    if isinstance(segs, dict):
        segs = [segs]
    for seg in segs or []:
        if not isinstance(seg, dict):
            continue
        pal = _as_number(seg.get("pal"))
        if pal in PALETTE_RANGE and pal not in refs:
            refs.append(int(pal))
    return refs

def ledmap_ref(body) -> Optional[int]:
    if not isinstance(body, dict) or "ledmap" not in body:
        return None
    n = _as_number(body.get("ledmap"))
    return int(n) if n in LEDMAP_RANGE else None

def clean_side_data(text: str) -> str:
    """Palette/ledmap files are stored on one line."""
    return re.sub(r"\s{2,}", " ", text.replace("\r", "").replace("\n", "")).strip()

# -----------------------------
# Tag / Group word sets
# -----------------------------
def split_words(text: Optional[str]) -> List[str]:
    return [w.strip() for w in (text or "").split(",") if w.strip()]

def join_words(words: Iterable[str]) -> str:
    return ",".join(sorted(set(w for w in words if w)))

def add_words(existing: Optional[str], words: Iterable[str]) -> str:
    return join_words(split_words(existing) + list(words))

def remove_words(existing: Optional[str], words: Iterable[str]) -> str:
    drop = set(words)
    return join_words(w for w in split_words(existing) if w not in drop)

def now_stamp() -> str:
    return _dt.datetime.now().strftime(DATE_FORMAT)
