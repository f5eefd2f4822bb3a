#!/usr/bin/env python3
# wled_librarian.py
# GAL 26-10-09: WLED Preset Librarian entry point
# - Startup flags, config resolution, library open/create
# - Interactive prompt (raw keys) or non-interactive (-c / piped stdin)
# GAL 26-10-14: JSON config beside the script + WLED_LIBRARIAN_DB env override

"""
WLED Preset Librarian
=====================
Keeps WLED presets in a local sqlite library so they can be tagged, grouped,
trimmed and exported back as a presets.json file or straight to a controller.

Precedence: CLI > env > JSON config > GLOBAL_DEFAULTS.

JSON config (optional):
  Same folder as this script, named `wled_librarian.config.json`, e.g.:
  {
    "db_file": "~/wled/wled_librarian.dbs",
    "http_timeout": 15,
    "default_tag": "new",
    "http_retries": 3
  }

Examples:
  wled_librarian.py                          interactive
  wled_librarian.py -f xmas.dbs -c 'import file:presets.json tag:xmas; show tag:xmas'
  echo 'show pid:5 pdata' | wled_librarian.py -a
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Optional

from librarian_commands import Session, headline, run_command
from librarian_console import ERROR, configure, dprint, say
from librarian_db import open_library
from line_input import LineEditor, answer_is_yes, platform_source
from wled_core import SchemaError

GLOBAL_DEFAULTS = {
    "db_file": "wled_librarian.dbs",
    "default_tag": "new",
    "pid_min": 1,
    "pid_max": 250,
    "http_retries": 3,
    "http_retry_delay": 1.0,
    "http_timeout": 10,
    "http_state_timeout": 5,
    "check_duplicates": True,
    "reformat": True,
    "monochrome": False,
    "debug": False,
}

ENV_DB = "WLED_LIBRARIAN_DB"
PROMPT = "-> "


# ---------- Config resolution: CLI > env > JSON > GLOBAL_DEFAULTS ----------
def load_json_config(path: Optional[str]) -> dict:
    if not path:
        # default: same folder as script
        path = str(Path(__file__).with_name("wled_librarian.config.json"))
    p = Path(path).expanduser()
    if p.exists():
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return {k: v for k, v in data.items() if k in GLOBAL_DEFAULTS}
    return {}

def resolve_config(cli_args: dict, json_path: Optional[str] = None) -> dict:
    cfg = dict(GLOBAL_DEFAULTS)
    cfg.update(load_json_config(json_path))
    if os.environ.get(ENV_DB):
        cfg["db_file"] = os.environ[ENV_DB]
    for k, v in cli_args.items():
        if v is not None:
            cfg[k] = v
    cfg["db_file"] = str(Path(cfg["db_file"]).expanduser())
    return cfg

def parse_cli(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="WLED preset librarian.")
    ap.add_argument("-a", dest="monochrome", action="store_true", default=None,
                    help="monochrome output")
    ap.add_argument("-d", dest="debug", action="store_true", default=None,
                    help="debug output")
    ap.add_argument("-p", dest="no_dupl", action="store_true",
                    help="disable duplicate preset checks on import")
    ap.add_argument("-r", dest="no_reformat", action="store_true",
                    help="store imported presets without reformatting")
    ap.add_argument("-f", dest="db_file", help=f"library file (default {GLOBAL_DEFAULTS['db_file']})")
    ap.add_argument("-c", dest="commands", help="run ';' separated commands and exit")
    ap.add_argument("--config", help="JSON config file")
    return ap.parse_args(argv)


# ---------- Line-mode prompts (no raw terminal) ----------
def _line_ask(prompt: str) -> str:
    say(prompt, "prompt", nocr=True)
    line = sys.stdin.readline()
    if not sys.stdin.isatty():
        say(line.rstrip("\n"))
    return line.strip()

def _line_confirm(prompt: str) -> bool:
    return answer_is_yes(_line_ask(prompt), prompt)


def run_batch(session: Session, lines) -> None:
    for line in lines:
        line = line.strip()
        if not line:
            continue
        say(f"{PROMPT}{line}", "prompt")
        if not run_command(session, line):
            break

def run_interactive(session: Session, editor: LineEditor) -> None:
    say(headline(), "heading")
    while session.running:
        line = editor.read_line(PROMPT)
        run_command(session, line)


def main(argv=None) -> int:
    args = parse_cli(argv)
    cli = {
        "db_file": args.db_file,
        "monochrome": args.monochrome,
        "debug": args.debug,
        "check_duplicates": False if args.no_dupl else None,
        "reformat": False if args.no_reformat else None,
    }
    cfg = resolve_config(cli, args.config)
    configure(monochrome=bool(cfg["monochrome"]), debug=bool(cfg["debug"]))
    dprint(f"Effective config: {json.dumps(cfg)}", ctx="startup")

    interactive = args.commands is None and sys.stdin.isatty()
    if not interactive:
        return _run(cfg, args, _line_ask, _line_confirm, None)

    source, keys = platform_source()
    with source:
        editor = LineEditor(source, keys, headline=headline)
        try:
            return _run(cfg, args, editor.ask, editor.confirm, editor)
        except KeyboardInterrupt:
            say("")
            return 0

def _run(cfg: dict, args, ask, confirm, editor: Optional[LineEditor]) -> int:
    try:
        db = open_library(cfg["db_file"], confirm)
    except SchemaError as e:
        ERROR(str(e), ctx="startup")
        return 1
    session = Session(db=db, cfg=cfg, ask=ask, confirm=confirm)
    try:
        if args.commands is not None:
            run_batch(session, args.commands.split(";"))
        elif editor is None:
            run_batch(session, sys.stdin)
        else:
            run_interactive(session, editor)
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
