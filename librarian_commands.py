# librarian_commands.py
# GAL 26-10-07: Command dispatcher + handlers for the librarian prompt
# - show (+ add/remove/export on the shown Lids), delete, dupl, edit, import, sort, dump, help, quit
# - LibrarianError from any handler is printed and the session continues
# GAL 26-10-11: show ... wled[:ip] sends the first shown preset to the controller

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd

from command_parser import ParsedCommand, parse
from librarian_console import ERROR, dprint, say
from librarian_db import DEFAULT_SORT, SORT_COLUMNS, LibraryDB
from preset_export import PresetExporter
from preset_import import DeviceSource, FileSource, PresetImporter
from wled_core import (
    CommandError, DeviceError, IntegrityError, LibrarianError, ResourceError,
    add_words, join_words, now_stamp, remove_words, renumber_pdata, split_words, unwrap_pdata,
    validate_json,
)
from wled_transport import WledClient

VERSION = "1.4"

SHOW_FILTERS = ["type", "pid", "pname", "qll", "date", "lid", "tag", "group", "src"]
DELETE_FILTERS = ["lid", "pid", "pname", "type", "qll", "date", "tag", "group"]
EDIT_FIELDS = {"pid": "Pid", "pname": "Pname", "qll": "Qll", "src": "Src"}


@dataclass
class Session:
    """Everything a handler needs; one per program run."""
    db: LibraryDB
    cfg: Dict
    ask: Callable[[str], str]
    confirm: Callable[[str], bool]
    sort: Tuple[str, str] = DEFAULT_SORT
    client_factory: Optional[Callable[[str], object]] = None
    running: bool = True

    def client(self, ip: str):
        if self.client_factory:
            return self.client_factory(ip)
        return WledClient(ip, retries=self.cfg.get("http_retries", 3),
                          retry_delay=self.cfg.get("http_retry_delay", 1.0),
                          timeout=self.cfg.get("http_timeout", 10),
                          state_timeout=self.cfg.get("http_state_timeout", 5))

    @property
    def pid_range(self) -> Tuple[int, int]:
        return int(self.cfg.get("pid_min", 1)), int(self.cfg.get("pid_max", 250))


# -----------------------------
# Display
# -----------------------------
def _cell(value) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value)

def format_table(df: pd.DataFrame) -> List[str]:
    """Left-aligned columns, dash rule under the header."""
    cols = list(df.columns)
    cells = [[_cell(v) for v in row] for row in df.itertuples(index=False, name=None)]
    widths = [max([len(c)] + [len(r[i]) for r in cells]) for i, c in enumerate(cols)]
    lines = ["  ".join(c.ljust(w) for c, w in zip(cols, widths)).rstrip(),
             "  ".join("-" * w for w in widths)]
    for r in cells:
        lines.append("  ".join(v.ljust(w) for v, w in zip(r, widths)).rstrip())
    return lines

def display_presets(s: Session, df: pd.DataFrame, pdata: bool = False, pal: bool = False,
                    ledmap: bool = False) -> None:
    if df.empty:
        say("   No presets selected.", "warn")
        return
    lids = [int(x) for x in df["Lid"].tolist()]
    extra = {}
    if pdata:
        extra["pdata"] = {r["Lid"]: r["Pdata"] for r in s.db.pdata_for(lids)}
    if pal:
        extra["pal"] = {}
        for r in s.db.palettes_for(lids):
            extra["pal"].setdefault(r["Plid"], []).append(f"palette{256 - r['Plnum']}: {r['Pldata']}")
    if ledmap:
        extra["map"] = {}
        for r in s.db.ledmaps_for(lids):
            extra["map"].setdefault(r["Mlid"], []).append(f"ledmap{r['Mnum']}: {r['Mdata']}")

    lines = format_table(df)
    say("")
    say("   " + lines[0], "heading")
    say("   " + lines[1], "heading")
    for lid, line in zip(lids, lines[2:]):
        say("   " + line)
        if pdata:
            say(extra["pdata"].get(lid, ""), "help")
        for key in ("pal", "map"):
            for item in extra.get(key, {}).get(lid, []):
                say("      " + item, "help")
    say(f"   {len(lids)} preset{'s' if len(lids) != 1 else ''}", "ok")

def state_payloads(pdata: str, ptype: str) -> List[str]:
    """JSON bodies to POST to /json/state to show one stored preset."""
    if ptype == "playlist" and '"playlist":' in pdata:
        return ['{"on":true}', "{" + pdata[pdata.find('"playlist":'):]]
    if '"seg":' in pdata:
        payload = "{" + pdata[pdata.find('"seg":'):]
        if validate_json(payload)[0]:
            return ['{"on":true}', payload]
    return [unwrap_pdata(pdata)]

def show_on_wled(s: Session, lid: int, ip: str) -> None:
    row = s.db.require_preset(lid)
    client = s.client(ip)
    for payload in state_payloads(row["Pdata"], row["Type"]):
        client.post_state(payload)
    say(f"   Lid {lid} ({row['Pname']}) sent to WLED {ip}.", "ok")


# -----------------------------
# Secondary clause handlers (operate on the Lids picked by show)
# -----------------------------
def _change_words(s: Session, cmd: ParsedCommand, lids: List[int], op) -> int:
    tags, groups = cmd.words("tag", 1), cmd.words("group", 1)
    if not tags and not groups:
        raise CommandError(f"{cmd.verb(1)} needs tag:<w> and/or group:<w>.")
    changed = 0
    for lid in lids:
        kw = s.db.get_keywords(lid)
        fields = {}
        for col, words in (("Tag", tags), ("Group", groups)):
            if not words:
                continue
            new = op(kw.get(col), words)
            if set(split_words(new)) != set(split_words(kw.get(col))):
                fields[col] = new
        if fields:
            s.db.update_keywords(lid, fields)
            changed += 1
    say(f"   {changed} preset{'s' if changed != 1 else ''} updated.", "ok")
    return changed

def cmd_add(s: Session, cmd: ParsedCommand, lids: List[int]) -> None:
    _change_words(s, cmd, lids, add_words)

def cmd_remove(s: Session, cmd: ParsedCommand, lids: List[int]) -> None:
    _change_words(s, cmd, lids, remove_words)

def cmd_export(s: Session, cmd: ParsedCommand, lids: List[int]) -> None:
    if not cmd.has("file", 1) and not cmd.has("wled", 1):
        raise CommandError("Export file or wled not specified.")
    exporter = PresetExporter(s.db, s.confirm)
    if cmd.has("file", 1):
        exporter.to_file(lids, cmd.get("file", 1))
    if cmd.has("wled", 1):
        exporter.to_device(lids, s.client(cmd.get("wled", 1)))

SECONDARY = {"add": cmd_add, "remove": cmd_remove, "export": cmd_export}


# -----------------------------
# Primary handlers
# -----------------------------
def cmd_show(s: Session, cmd: ParsedCommand) -> None:
    filters = cmd.filters(SHOW_FILTERS)
    if cmd.chained:
        lids = s.db.select_lids(filters, s.sort)
        if not lids:
            say("   No presets selected.", "warn")
            return
        SECONDARY[cmd.verb(1)](s, cmd, lids)
        filters = {"lid": [str(x) for x in lids]}
    df = s.db.select_frame(filters, s.sort, with_src=cmd.has("src"))
    display_presets(s, df, pdata=cmd.has("pdata"), pal=cmd.has("pal"), ledmap=cmd.has("map"))
    if cmd.has("wled") and not df.empty:
        show_on_wled(s, int(df["Lid"].iloc[0]), cmd.get("wled"))

def cmd_delete(s: Session, cmd: ParsedCommand) -> None:
    filters = cmd.filters(DELETE_FILTERS)
    if not filters:
        raise IntegrityError("Delete requires at least one of lid, pid, pname, type, qll, date, tag, group.")
    df = s.db.select_frame(filters, s.sort)
    display_presets(s, df)
    if df.empty:
        return
    if not s.confirm("Delete these presets? [y/N] -> "):
        say("   Nothing deleted.", "warn")
        return
    lids = [int(x) for x in df["Lid"].tolist()]
    for lid in lids:
        s.db.delete_preset(lid)
    say(f"   {len(lids)} preset{'s' if len(lids) != 1 else ''} deleted.", "ok")

def _single_lid(cmd: ParsedCommand) -> int:
    lids = cmd.words("lid")
    if len(lids) != 1:
        raise CommandError(f"{cmd.verb(0)} requires exactly one lid:<i>.")
    return int(lids[0])

def _pid_value(s: Session, cmd: ParsedCommand) -> int:
    pids = cmd.words("pid")
    if len(pids) != 1:
        raise CommandError("pid takes a single number.")
    pid = int(pids[0])
    if not 0 <= pid <= s.pid_range[1]:
        raise CommandError(f"pid must be 0..{s.pid_range[1]}.")
    return pid

def cmd_dupl(s: Session, cmd: ParsedCommand) -> None:
    lid = _single_lid(cmd)
    src = s.db.require_preset(lid)
    row = {k: src[k] for k in ("Pid", "Pname", "Qll", "Pdata", "Type")}
    if cmd.has("pid"):
        row["Pid"] = _pid_value(s, cmd)
        row["Pdata"] = renumber_pdata(row["Pdata"], row["Pid"])
    for key, col in (("pname", "Pname"), ("qll", "Qll")):
        if cmd.has(key):
            row[col] = cmd.get(key)
    row["Src"] = f"Dupl of lid {lid}"
    row["Date"] = now_stamp()
    new_lid = s.db.add_preset(row, join_words(cmd.words("tag")), join_words(cmd.words("group")))
    for p in s.db.palettes_for([lid]):
        s.db.add_palette(new_lid, p["Plnum"], p["Pldata"])
    for m in s.db.ledmaps_for([lid]):
        s.db.add_ledmap(new_lid, m["Mnum"], m["Mdata"])
    say(f"   Lid {new_lid} created.", "ok")
    display_presets(s, s.db.select_frame({"lid": [str(new_lid)]}, s.sort, with_src=True))

def cmd_edit(s: Session, cmd: ParsedCommand) -> None:
    lid = _single_lid(cmd)
    current = s.db.require_preset(lid)
    fields = {}
    for key, col in EDIT_FIELDS.items():
        if cmd.has(key):
            fields[col] = _pid_value(s, cmd) if key == "pid" else cmd.get(key)
    if not fields:
        raise CommandError("Nothing to change.")
    if "Pid" in fields:
        fields["Pdata"] = renumber_pdata(current["Pdata"], fields["Pid"])
    s.db.update_preset(lid, fields)
    say(f"   Value{'s' if len(fields) > 1 else ''} changed.", "ok")
    display_presets(s, s.db.select_frame({"lid": [str(lid)]}, s.sort, with_src="Src" in fields))

def cmd_import(s: Session, cmd: ParsedCommand) -> None:
    if cmd.has("file"):
        path = cmd.get("file")
        if "palette" in path.rsplit("/", 1)[-1].lower():
            raise CommandError("Direct palette file import is not implemented.")
        source = FileSource(path)
    elif cmd.has("wled"):
        source = DeviceSource(s.client(cmd.get("wled")))
    else:
        raise CommandError("No import source specified. Use file:<file> or wled[:<ip>].")
    importer = PresetImporter(
        s.db, s.ask, s.confirm,
        check_duplicates=s.cfg.get("check_duplicates", True),
        reformat=s.cfg.get("reformat", True),
        default_tag=s.cfg.get("default_tag", "new"),
        pid_range=s.pid_range,
    )
    importer.run(source, cmd.words("tag"), cmd.words("group"))

def cmd_sort(s: Session, cmd: ParsedCommand) -> None:
    col = SORT_COLUMNS[cmd.get("sort")]
    direction = "DESC" if cmd.get("dir") == "d" else "ASC"
    s.sort = (col, direction)
    say(f"   Sorting set to {col} {direction}", "ok")

def cmd_dump(s: Session, cmd: ParsedCommand) -> None:
    if not cmd.has("tbl"):
        raise CommandError("dump requires tbl:<Presets|Keywords|Palettes|Ledmaps>.")
    cols, rows = s.db.table_rows(cmd.get("tbl"))
    say(f"\n=== {cmd.get('tbl')} record dump ===", "heading")
    say(" | ".join(cols), "heading")
    for r in rows:
        say(" | ".join(_cell(v) for v in r))
    say(f"   {len(rows)} records", "ok")

def cmd_help(s: Session, cmd: ParsedCommand) -> None:
    topic = cmd.get("topic") or "general"
    text = HELP.get(topic)
    if text is None:
        raise CommandError(f"No help for '{topic}'. Topics: {', '.join(sorted(HELP))}.")
    say(text, "help")

def cmd_quit(s: Session, cmd: ParsedCommand) -> None:
    s.running = False

HANDLERS = {
    "show": cmd_show, "delete": cmd_delete, "dupl": cmd_dupl, "edit": cmd_edit,
    "import": cmd_import, "sort": cmd_sort, "dump": cmd_dump, "help": cmd_help,
    "quit": cmd_quit,
}


def run_command(s: Session, line: str) -> bool:
    """Parse and run one line. Returns False once the session should end."""
    if not line.strip():
        return s.running
    try:
        cmd = parse(line)
        dprint(f"parsed {dict(cmd.values)}", ctx="command")
        if cmd.chained and cmd.verb(0) != "show":
            raise CommandError(f"'{cmd.verb(1)}' can only follow show.")
        HANDLERS[cmd.verb(0)](s, cmd)
    except (DeviceError, ResourceError) as e:
        ERROR(str(e))
    except LibrarianError as e:
        say(f"   {e}", "error")
    return s.running


# -----------------------------
# Headline / help text
# -----------------------------
RULE = "=" * 85

def headline() -> str:
    return "\n".join([
        RULE,
        f"WLED Preset Librarian v{VERSION}",
        "",
        "Enter a command and its options. show accepts a second command (add, remove, export)",
        "that works on the presets it selected. Up/Down recall earlier commands, Tab completes",
        "file:<path>, Home shows this header. Imports get tag:new when no tag or group is given.",
        "lid, pid, tag and group take comma separated lists, e.g. tag:<w>,<w>.",
        "",
        "Commands:",
        "   show [tag:<w>] [group:<w>] [pid:<i>] [lid:<i>] [date:<d>] [pname:<n>] [qll:<w>]",
        "        [type:<w>] [src[:<w>]] [pdata] [pal] [map] [wled[:<ip>]]",
        "      + add [tag:<w>] [group:<w>]",
        "      + remove [tag:<w>] [group:<w>]",
        "      + export [file:<file>] [wled[:<ip>]]",
        "   delete [lid:<i>] [pid:<i>] [tag:<w>] [group:<w>] [pname:<n>] [type:<w>]",
        "   dupl lid:<i> [pid:<i>] [pname:<n>] [qll:<w>] [tag:<w>] [group:<w>]",
        "   edit lid:<i> [pid:<i>] [pname:<n>] [qll:<w>] [src:<w>]",
        "   import file:<file> | wled[:<ip>] [tag:<w>] [group:<w>]",
        "   sort lid|pid|pname|date|tag|group[:a|d]",
        "   dump tbl:<Presets|Keywords|Palettes|Ledmaps>",
        "   help [add|delete|dupl|dump|edit|export|import|quit|remove|show|sort]",
        "   quit",
        RULE,
    ])

HELP = {
    "general": (
        "Presets are imported from a presets.json file or a WLED controller, tagged and grouped,\n"
        "then exported back as a whole or in part. Each stored preset has a library id (lid) that\n"
        "never changes and a WLED preset number (pid) that may repeat across the library.\n"
        "Quote values with spaces: pname:'Xmas Tree'. Type 'help <command>' for details."
    ),
    "show": (
        "show [filters] [pdata] [pal] [map] [src] [wled[:<ip>]] [add|remove|export ...]\n"
        "   Lists presets. Different filters must all match; comma values match any.\n"
        "   lid/pid match exactly, the others match any part of the field.\n"
        "   pdata prints the preset JSON, pal/map print custom palettes and ledmaps.\n"
        "   wled sends the first listed preset to the controller (default 4.3.2.1)."
    ),
    "add": (
        "show <filters> add [tag:<w>,...] [group:<w>,...]\n"
        "   Adds words to the Tag and/or Group of every preset show selects."
    ),
    "remove": (
        "show <filters> remove [tag:<w>,...] [group:<w>,...]\n"
        "   Removes words from the Tag and/or Group of every preset show selects."
    ),
    "export": (
        "show <filters> export [file:<file>] [wled[:<ip>]]\n"
        "   Writes the selected presets as a presets.json file (palette/ledmap files beside it)\n"
        "   or uploads them to the controller, which is then rebooted."
    ),
    "delete": (
        "delete <filters>\n"
        "   Lists the matching presets and asks before removing them with their keywords,\n"
        "   palettes and ledmaps. At least one filter is required."
    ),
    "dupl": (
        "dupl lid:<i> [pid:<i>] [pname:<n>] [qll:<w>] [tag:<w>] [group:<w>]\n"
        "   Copies one preset (and its palettes/ledmaps) to a new lid. Tag and Group start\n"
        "   empty unless given."
    ),
    "edit": (
        "edit lid:<i> [pid:<i>] [pname:<n>] [qll:<w>] [src:<w>]\n"
        "   Changes the given fields of one preset."
    ),
    "import": (
        "import file:<file> | wled[:<ip>] [tag:<w>] [group:<w>]\n"
        "   Loads presets.json. Presets matching library content ask for Skip, Replace,\n"
        "   New (lowest free pid), Keep (same pid), a pid 1-250, or 0 to stop the import.\n"
        "   Custom palettes and ledmaps are read from files beside the import file or from\n"
        "   the controller."
    ),
    "sort": (
        "sort lid|pid|pname|date|tag|group[:a|d]\n"
        "   Sets the show order until changed. Default is lid ascending."
    ),
    "dump": (
        "dump tbl:<Presets|Keywords|Palettes|Ledmaps>\n"
        "   Prints every record of one library table."
    ),
    "quit": "quit | q\n   Ends the program.",
}
