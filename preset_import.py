# preset_import.py
# GAL 26-10-01: Import presets.json (file or live controller) into the library
# - Every body is formatted (wled_core.canonicalize) before anything is written
# - Near-duplicates found by fingerprint; user picks Skip/Replace/New/Keep/#
# - Renumbered Pids are carried into playlists of the same batch
# GAL 26-10-05: Custom palettes (pal 247..256) and ledmaps pulled from sibling files or the device

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from librarian_console import INFO, WARN, dprint, say
from wled_core import (
    ResourceError, canonicalize, clean_side_data, compact_pdata, fingerprint,
    join_words, ledmap_file, ledmap_ref, now_stamp, palette_file, palette_refs,
    preset_type, renumber_pdata, rewrite_playlist_refs, validate_json,
)

SENTINEL_RE = re.compile(r'"0"\s*:\s*\{\s*\}')
CONFLICT_PROMPT = "Skip, Replace, New, Keep, or # (0 to abort) -> "
PID_MIN, PID_MAX = 1, 250


# -----------------------------
# Sources
# -----------------------------
class FileSource:
    """presets.json on disk; palette/ledmap files are looked up beside it."""

    def __init__(self, path):
        self.path = Path(path)
        self.label = self.path.name

    def read_document(self) -> str:
        if not self.path.is_file():
            raise ResourceError(f"File not found: {self.path}")
        try:
            return self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ResourceError(f"Can't read {self.path}: {e}") from None

    def side_file(self, name: str) -> Optional[str]:
        p = self.path.with_name(name)
        if not p.is_file():
            return None
        try:
            return p.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            WARN(f"Can't read {p}: {e}", ctx="import")
            return None


class DeviceSource:
    """presets.json and slot files fetched from the controller."""

    label = "device"

    def __init__(self, client):
        self.client = client

    def read_document(self) -> str:
        text = self.client.fetch("presets.json")
        if text is None:
            raise ResourceError(f"No presets.json on {self.client.ip}")
        return text

    def side_file(self, name: str) -> Optional[str]:
        return self.client.fetch(name)


# -----------------------------
# Records
# -----------------------------
@dataclass
class Candidate:
    pid: int
    body: dict
    pdata: str
    ptype: str

    @property
    def name(self) -> str:
        return str(self.body.get("n", ""))

    @property
    def qll(self) -> str:
        return str(self.body.get("ql", ""))


@dataclass
class ImportResult:
    imported: int = 0
    replaced: int = 0
    skipped: int = 0
    aborted: bool = False
    renumbered: Dict[int, int] = field(default_factory=dict)
    lids: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def decode_document(text: str) -> dict:
    try:
        doc = json.loads(text)
    except ValueError as e:
        raise ResourceError(f"Preset data is not valid JSON: {e}") from None
    if not isinstance(doc, dict):
        raise ResourceError("Preset data is not a JSON object.")
    return doc


def build_candidates(doc: dict, reformat: bool = True) -> List[Candidate]:
    """All records except "0", ascending Pid. Any bad record rejects the whole document."""
    out = []
    for key in doc:
        if not str(key).strip().isdigit():
            raise ResourceError(f"Unexpected preset key '{key}'; import aborted.")
    for key in sorted(doc, key=lambda k: int(k)):
        pid = int(key)
        if pid == 0:
            continue
        body = doc[key]
        pdata = canonicalize(body, pid) if reformat else None
        if not reformat and isinstance(body, dict):
            pdata = compact_pdata(body, pid)
        if pdata is None:
            raise ResourceError(f"Preset {pid} is not valid preset data; import aborted.")
        out.append(Candidate(pid, body, pdata, preset_type(body)))
    return out


class PresetImporter:
    def __init__(self, db, ask: Callable[[str], str], confirm: Callable[[str], bool],
                 check_duplicates: bool = True, reformat: bool = True,
                 default_tag: str = "new", pid_range: Tuple[int, int] = (PID_MIN, PID_MAX)):
        self.db = db
        self.ask = ask
        self.confirm = confirm
        self.check_duplicates = check_duplicates
        self.reformat = reformat
        self.default_tag = default_tag
        self.pid_min, self.pid_max = pid_range

    # ---------- conflict resolution ----------
    def lowest_unused_pid(self) -> Optional[int]:
        used = self.db.used_pids()
        for n in range(self.pid_min, self.pid_max + 1):
            if n not in used:
                return n
        return None

    def _show_conflict(self, cand: Candidate, matches: List[dict]) -> None:
        say(f"\nPreset {cand.pid} '{cand.name}' ({cand.ptype}) matches library content:", "warn")
        for m in matches:
            say(f"   Lid {m['Lid']}  Pid {m['Pid']}  '{m['Pname']}'  Src {m['Src']}  "
                f"Tag {m.get('Tag') or ''}  Group {m.get('Group') or ''}")

    def resolve(self, cand: Candidate, matches: List[dict]):
        """Returns 'skip', 'replace', 'abort' or the Pid to insert with."""
        self._show_conflict(cand, matches)
        while True:
            ans = self.ask(CONFLICT_PROMPT).strip().lower()
            if ans in ("s", "skip"):
                return "skip"
            if ans in ("r", "replace"):
                return "replace"
            if ans in ("k", "keep"):
                return cand.pid
            if ans in ("n", "new"):
                pid = self.lowest_unused_pid()
                if pid is not None:
                    return pid
                say(f"   No unused preset number in {self.pid_min}..{self.pid_max}.", "error")
                continue
            if ans.isdigit():
                n = int(ans)
                if n == 0:
                    return "abort"
                if not self.pid_min <= n <= self.pid_max:
                    say(f"   Preset number must be {self.pid_min}..{self.pid_max}.", "error")
                    continue
                if n in self.db.used_pids():
                    say(f"   Preset number {n} is already used.", "error")
                    continue
                return n
            say("   Invalid response.", "error")

    # ---------- palettes / ledmaps ----------
    def _slot_data(self, source, name: str, cache: Dict[str, Optional[str]]) -> Optional[str]:
        if name in cache:
            return cache[name]
        text = source.side_file(name)
        if text is not None:
            text = clean_side_data(text)
            ok, why = validate_json(text)
            if not ok:
                WARN(f"{name} is not valid JSON ({why}); ignored.", ctx="import")
                text = None
        cache[name] = text
        return text

    def _side_resources(self, lid: int, body: dict, source, cache: Dict, result: ImportResult) -> None:
        for pal in palette_refs(body):
            if self.db.has_palette(lid, pal):
                continue
            name = palette_file(pal)
            data = self._slot_data(source, name, cache)
            if data is None:
                msg = f"No palette data for custom palette {256 - pal} ({name})."
                WARN(msg, ctx="import")
                result.warnings.append(msg)
                continue
            self.db.add_palette(lid, pal, data)
        mnum = ledmap_ref(body)
        if mnum is not None and not self.db.has_ledmap(lid):
            name = ledmap_file(mnum)
            data = self._slot_data(source, name, cache)
            if data is None:
                msg = f"No ledmap data for ledmap {mnum} ({name})."
                WARN(msg, ctx="import")
                result.warnings.append(msg)
            else:
                self.db.add_ledmap(lid, mnum, data)

    # ---------- main ----------
    def run(self, source, tags: List[str] = (), groups: List[str] = ()) -> ImportResult:
        result = ImportResult()
        text = source.read_document()
        if not SENTINEL_RE.search(text):
            say("File content doesn't look like WLED preset data.", "warn")
            if not self.confirm("Continue anyway? [y/N] -> "):
                result.aborted = True
                return result
        candidates = build_candidates(decode_document(text), self.reformat)

        tag = join_words(tags)
        group = join_words(groups)
        words_given = bool(tag or group)
        if not words_given:
            tag = self.default_tag

        cache: Dict[str, Optional[str]] = {}
        playlists: List[Tuple[int, str]] = []
        for cand in candidates:
            new_pid = cand.pid
            if self.check_duplicates:
                fp = fingerprint(cand.pdata, cand.ptype)
                dprint(f"fingerprint pid {cand.pid}: {fp[:60]}", ctx="import")
                matches = self.db.find_by_fingerprint(fp)
                if matches:
                    action = self.resolve(cand, matches)
                    if action == "abort":
                        result.aborted = True
                        say("Import aborted.", "warn")
                        break
                    if action == "skip":
                        result.skipped += 1
                        continue
                    if action == "replace":
                        lid = self._replace(matches[0]["Lid"], cand, source.label, tag, group, words_given)
                        result.replaced += 1
                        if cand.ptype == "playlist":
                            playlists.append((lid, cand.pdata))
                        continue
                    new_pid = action

            pdata = cand.pdata
            if new_pid != cand.pid:
                pdata = renumber_pdata(pdata, new_pid)
                result.renumbered[cand.pid] = new_pid
                say(f"   Preset {cand.pid} imported as {new_pid}.", "ok")
            lid = self.db.add_preset({
                "Pid": new_pid, "Pname": cand.name, "Qll": cand.qll, "Pdata": pdata,
                "Type": cand.ptype, "Src": source.label, "Date": now_stamp(),
            }, tag, group)
            result.imported += 1
            result.lids.append(lid)
            if cand.ptype == "playlist":
                playlists.append((lid, pdata))
            else:
                self._side_resources(lid, cand.body, source, cache, result)

        # playlist references to presets renumbered in this batch
        if result.renumbered:
            for lid, pdata in playlists:
                new = rewrite_playlist_refs(pdata, result.renumbered)
                if new != pdata:
                    self.db.update_preset(lid, {"Pdata": new})
                    dprint(f"playlist lid {lid} references updated", ctx="import")

        INFO(f"Imported {result.imported} presets from {source.label}; replaced {result.replaced}, "
             f"skipped {result.skipped}, renumbered {len(result.renumbered)}.")
        return result

    def _replace(self, lid: int, cand: Candidate, label: str, tag: str, group: str,
                 words_given: bool) -> int:
        """Overwrite the first matching row with the candidate."""
        self.db.update_preset(lid, {
            "Pid": cand.pid, "Pname": cand.name, "Qll": cand.qll, "Pdata": cand.pdata,
            "Type": cand.ptype, "Src": label, "Date": now_stamp(),
        })
        if words_given:
            self.db.update_keywords(lid, {k: v for k, v in (("Tag", tag), ("Group", group)) if v})
        say(f"   Lid {lid} replaced with preset {cand.pid}.", "ok")
        return lid
