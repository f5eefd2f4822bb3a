# preset_export.py
# GAL 26-10-03: Build a device-loadable presets.json from library rows
# - "0":{} sentinel first, stored Pdata joined in Lid order
# - palette<n>.json / ledmap<n>.json sidecars from the Palettes/Ledmaps rows
# - file target (confirm overwrite) or controller upload + reboot
# GAL 26-10-19: Write failures (missing folder, read-only) reported as ResourceError

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Tuple

from librarian_console import say
from wled_core import IntegrityError, ResourceError, ledmap_file, palette_file, validate_json

RECONNECT_WAIT = 15


def _write(path: Path, text: str) -> None:
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise ResourceError(f"Can't write {path}: {e}") from None


def build_document(pdata_list: List[str]) -> str:
    """presets.json text; raises ResourceError if the result isn't valid JSON."""
    text = '{"0":{},\n' + ",\n".join(pdata_list) + "\n}\n"
    ok, why = validate_json(text)
    if not ok:
        raise ResourceError(f"Exported preset data is not valid JSON: {why}")
    return text


class PresetExporter:
    def __init__(self, db, confirm: Callable[[str], bool]):
        self.db = db
        self.confirm = confirm

    def collect(self, lids: Iterable[int]) -> Tuple[str, Dict[str, str], int]:
        """(presets.json text, {sidecar file name: data}, preset count)."""
        lids = sorted(set(int(x) for x in lids))
        rows = self.db.pdata_for(lids)
        if not rows:
            raise IntegrityError("No presets selected for export.")
        document = build_document([r["Pdata"] for r in rows])

        sidecars: Dict[str, str] = {}
        for r in self.db.palettes_for(lids):
            sidecars[palette_file(r["Plnum"])] = r["Pldata"]
        for r in self.db.ledmaps_for(lids):
            sidecars[ledmap_file(r["Mnum"])] = r["Mdata"]
        for name, data in sidecars.items():
            ok, why = validate_json(data)
            if not ok:
                raise ResourceError(f"{name} data is not valid JSON: {why}")
        return document, sidecars, len(rows)

    @staticmethod
    def _ordered(sidecars: Dict[str, str]) -> List[str]:
        pal = sorted(n for n in sidecars if n.startswith("palette"))
        return pal + sorted(n for n in sidecars if n.startswith("ledmap"))

    def to_file(self, lids: Iterable[int], target) -> int:
        document, sidecars, count = self.collect(lids)
        target = Path(target)
        if target.exists() and not self.confirm(f"Overwrite existing file {target}? [y/N] -> "):
            say("   Export aborted.", "warn")
            return 0
        _write(target, document)
        for name in self._ordered(sidecars):
            side = target.with_name(name)
            _write(side, sidecars[name])
            say(f"   {'Palette' if name.startswith('palette') else 'Ledmap'} file created: {side}", "warn")
        say(f"   Exported {count} preset{'s' if count != 1 else ''} to {target}", "ok")
        return count

    def to_device(self, lids: Iterable[int], client) -> int:
        """Upload presets.json then palettes then ledmaps, then reboot the controller."""
        document, sidecars, count = self.collect(lids)
        with tempfile.TemporaryDirectory(prefix="wled_librarian_") as tmp:
            main = Path(tmp) / "presets.json"
            _write(main, document)
            client.upload(main)
            for name in self._ordered(sidecars):
                side = Path(tmp) / name
                _write(side, sidecars[name])
                client.upload(side)
                say(f"   Sent {'palette' if name.startswith('palette') else 'ledmap'} to WLED: {name}", "warn")
        say(f"   Exported {count} preset{'s' if count != 1 else ''} to WLED.", "ok")
        client.reset()
        say(f"   WLED reset. Wait ~{RECONNECT_WAIT} sec for network reconnect.", "warn")
        return count
