# command_parser.py
# GAL 26-09-26: Librarian command grammar
# - One primary clause, optionally chained with one secondary clause (add/remove/export)
# - key:value options, flags, comma lists, quoted values
# - Result is a flat map: cmd0/cmd1 plus <key><clause> entries

"""
Examples
    show tag:xmas,halloween group:porch
        → {cmd0: show, tag0: "xmas,halloween", group0: "porch"}
    show pid:5 add tag:new
        → {cmd0: show, pid0: "5", cmd1: add, tag1: "new"}
    import file:'My Presets/presets.json' tag:test
        → {cmd0: import, file0: "My Presets/presets.json", tag0: "test"}
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from wled_core import CommandError

DEFAULT_WLED_IP = "4.3.2.1"

PRIMARY_VERBS: Dict[str, List[str]] = {
    "import": ["file", "wled", "tag", "group"],
    "show":   ["tag", "group", "date", "pid", "pname", "type", "lid", "pdata", "qll",
               "src", "pal", "map", "wled"],
    "delete": ["lid", "pid", "pname", "type", "qll", "date", "tag", "group"],
    "dupl":   ["lid", "pid", "pname", "qll", "tag", "group"],
    "edit":   ["lid", "pid", "pname", "qll", "src"],
    "sort":   [],
    "dump":   ["tbl"],
    "help":   [],
    "quit":   [],
}

SECONDARY_VERBS: Dict[str, List[str]] = {
    "add":    ["tag", "group"],
    "remove": ["tag", "group"],
    "export": ["file", "wled"],
}

VERB_ALIASES = {"duplicate": "dupl", "q": "quit", "exit": "quit"}

FLAG_KEYS = {"pdata", "pal", "map"}
LIST_KEYS = {"lid", "pid", "tag", "group"}
NUMERIC_KEYS = {"lid", "pid"}

SORT_KEYS = ["lid", "pid", "pname", "date", "tag", "group"]


@dataclass(frozen=True)
class ParsedCommand:
    """Immutable result of parse(); handlers read it, never change it."""
    values: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def verb(self, clause: int = 0) -> Optional[str]:
        return self.values.get(f"cmd{clause}")

    def has(self, key: str, clause: int = 0) -> bool:
        return f"{key}{clause}" in self.values

    def get(self, key: str, clause: int = 0, default=None):
        return self.values.get(f"{key}{clause}", default)

    def words(self, key: str, clause: int = 0) -> List[str]:
        value = self.get(key, clause)
        if not isinstance(value, str):
            return []
        return [w for w in value.split(",") if w]

    def filters(self, keys, clause: int = 0) -> Dict[str, List[str]]:
        """Filter keys that carry a value (bare flags such as `src` are skipped)."""
        return {k: self.words(k, clause) if k in LIST_KEYS else [self.get(k, clause)]
                for k in keys if isinstance(self.get(k, clause), str)}

    @property
    def chained(self) -> bool:
        return "cmd1" in self.values


def normalize(line: str) -> str:
    line = re.sub(r"\s+", " ", line).strip()
    return re.sub(r"(\w):\s+", r"\1:", line)

def tokenize(line: str) -> List[str]:
    lexer = shlex.shlex(line, posix=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    lexer.escape = ""
    try:
        return list(lexer)
    except ValueError as e:
        raise CommandError(f"Malformed command: {e}.") from None

def _clean_list(key: str, value: str) -> str:
    value = re.sub(r",+", ",", value).strip(",")
    if not value:
        raise CommandError(f"Option {key} requires a value.")
    if key in NUMERIC_KEYS and not re.fullmatch(r"[0-9,]+", value):
        raise CommandError(f"Invalid {key} value: {value}")
    return value

def _sort_args(args: List[str], out: Dict, idx: int) -> None:
    if len(args) != 1:
        raise CommandError(f"Usage: sort <{'|'.join(SORT_KEYS)}>[:a|d]")
    col, _, direction = args[0].lower().partition(":")
    if col not in SORT_KEYS:
        raise CommandError(f"Unsupported sort column: {col}")
    direction = direction or "a"
    if direction not in ("a", "d"):
        raise CommandError(f"Unsupported sort direction: {direction}")
    out[f"sort{idx}"] = col
    out[f"dir{idx}"] = direction

def _parse_clause(tokens: List[str], idx: int, table: Dict[str, List[str]], out: Dict) -> None:
    verb = tokens[0].lower()
    verb = VERB_ALIASES.get(verb, verb)
    if verb not in table:
        raise CommandError("Unsupported command.")
    out[f"cmd{idx}"] = verb
    args = tokens[1:]

    if verb == "sort":
        _sort_args(args, out, idx)
        return
    if verb == "help":
        if args:
            out[f"topic{idx}"] = VERB_ALIASES.get(args[0].lower(), args[0].lower())
        return

    allowed = table[verb]
    for tok in args:
        key, sep, value = tok.partition(":")
        key = key.lower()
        if key not in allowed:
            raise CommandError(f"Unsupported option '{key}' for {verb}.")
        name = f"{key}{idx}"
        if not sep or value == "":
            if key in FLAG_KEYS or (key == "src" and verb == "show"):
                out[name] = True
            elif key == "wled":
                out[name] = DEFAULT_WLED_IP
            else:
                raise CommandError(f"Option {key} requires a value.")
            continue
        if key in FLAG_KEYS:
            raise CommandError(f"Option {key} takes no value.")
        if key in LIST_KEYS:
            value = _clean_list(key, value)
            if isinstance(out.get(name), str):
                value = out[name] + "," + value
        out[name] = value

def parse(line: str) -> ParsedCommand:
    """Parse one command line; raises CommandError on anything unsupported."""
    tokens = tokenize(normalize(line))
    if not tokens:
        raise CommandError("Empty command.")

    # help takes a verb name as its topic, never a second clause
    split = None
    if tokens[0].lower() != "help":
        split = next((i for i, t in enumerate(tokens) if i > 0 and t.lower() in SECONDARY_VERBS), None)
    out: Dict[str, object] = {}
    if split is None:
        _parse_clause(tokens, 0, PRIMARY_VERBS, out)
    else:
        _parse_clause(tokens[:split], 0, PRIMARY_VERBS, out)
        _parse_clause(tokens[split:], 1, SECONDARY_VERBS, out)
    return ParsedCommand(out)
