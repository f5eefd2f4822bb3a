# librarian_db.py
# GAL 26-09-23: Preset library datastore (sqlite3)
# - Four tables: Presets, Keywords, Palettes, Ledmaps
# - Presets.Lid == Keywords.Kid; Palettes.Plid / Ledmaps.Mlid point at Lid
# - No FK constraints; cascades and paired inserts are done here
# GAL 26-10-06: Parameterized SQL everywhere; identifiers go through qi()

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from librarian_console import dprint
from wled_core import CommandError, IntegrityError, SchemaError

# -----------------------------
# Schema (column order matters for the startup check)
# -----------------------------
SCHEMA: Dict[str, List[Tuple[str, str]]] = {
    "Presets": [
        ("Lid",   "INTEGER PRIMARY KEY"),   # librarian identity
        ("Pid",   "INTEGER"),               # device preset number, not unique
        ("Pname", "VARCHAR(100)"),
        ("Qll",   "VARCHAR(10)"),
        ("Pdata", "TEXT"),                  # stored `"<pid>":{...}`
        ("Type",  "VARCHAR(10)"),           # preset | playlist
        ("Src",   "VARCHAR(100)"),
        ("Date",  "VARCHAR(20)"),
    ],
    "Keywords": [
        ("Kid",   "INTEGER PRIMARY KEY"),   # == Presets.Lid
        ("Tag",   "VARCHAR(255)"),
        ("Group", "VARCHAR(255)"),
    ],
    "Palettes": [
        ("Palid",  "INTEGER PRIMARY KEY"),
        ("Plid",   "INTEGER"),              # → Presets.Lid
        ("Plnum",  "INTEGER"),              # 247..256
        ("Pldata", "TEXT"),
    ],
    "Ledmaps": [
        ("Mapid", "INTEGER PRIMARY KEY"),
        ("Mlid",  "INTEGER"),               # → Presets.Lid
        ("Mnum",  "INTEGER"),               # 0..9
        ("Mdata", "TEXT"),
    ],
}

SQL_RESERVED = {"group", "order", "select", "where", "from", "table", "index", "key"}

_IDENTIFIERS = set(SCHEMA) | {c for cols in SCHEMA.values() for c, _ in cols}

def qi(name: str) -> str:
    """Quote a schema identifier; anything not in SCHEMA is refused."""
    if name not in _IDENTIFIERS:
        raise ValueError(f"Unknown column or table: {name!r}")
    if name.lower() in SQL_RESERVED:
        return f'"{name}"'
    return name

# Show/Delete filter keys → (column, exact match)
FILTER_COLUMNS = {
    "lid":   ("Lid", True),
    "pid":   ("Pid", True),
    "pname": ("Pname", False),
    "qll":   ("Qll", False),
    "type":  ("Type", False),
    "src":   ("Src", False),
    "date":  ("Date", False),
    "tag":   ("Tag", False),
    "group": ("Group", False),
}

SHOW_COLUMNS = ["Type", "Pid", "Pname", "Qll", "Date", "Lid", "Tag", "Group"]

SORT_COLUMNS = {
    "lid": "Lid", "pid": "Pid", "pname": "Pname", "date": "Date",
    "tag": "Tag", "group": "Group",
}

DEFAULT_SORT = ("Lid", "ASC")


def _like(value: str) -> str:
    esc = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{esc}%"

def _marks(n: int) -> str:
    return ",".join("?" * n)

def build_where(filters: Dict[str, Sequence[str]]) -> Tuple[str, list]:
    """
    AND across keys, OR across the comma values of one key.
    Numeric keys (lid, pid) match exactly, text keys match as substring.
    """
    clauses, params = [], []
    for key, values in filters.items():
        if key not in FILTER_COLUMNS or not values:
            continue
        col, exact = FILTER_COLUMNS[key]
        if exact:
            nums = []
            for v in values:
                if not str(v).strip().isdigit():
                    raise CommandError(f"Invalid {key} value: {v}")
                nums.append(int(v))
            clauses.append(f"{qi(col)} IN ({_marks(len(nums))})")
            params.extend(nums)
        else:
            ors = [f"{qi(col)} LIKE ? ESCAPE '\\'" for _ in values]
            clauses.append("(" + " OR ".join(ors) + ")")
            params.extend(_like(str(v)) for v in values)
    where = " AND ".join(clauses)
    return (f" WHERE {where}" if where else ""), params


class LibraryDB:
    """Single sqlite connection held for the whole session."""

    def __init__(self, path):
        self.path = Path(path)
        self.conn = sqlite3.connect(str(self.path))
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        self.conn.close()

    # ---------- low level ----------
    def execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        dprint(f"{sql} {list(params)}", ctx="sql")
        return self.conn.execute(sql, params)

    def query(self, sql: str, params: Sequence = ()) -> List[dict]:
        return [dict(r) for r in self.execute(sql, params).fetchall()]

    def frame(self, sql: str, params: Sequence = ()) -> pd.DataFrame:
        cur = self.execute(sql, params)
        cols = [d[0] for d in cur.description]
        return pd.DataFrame([tuple(r) for r in cur.fetchall()], columns=cols)

    def _insert(self, table: str, row: Dict) -> int:
        cols = list(row)
        sql = (f"INSERT INTO {qi(table)} ({','.join(qi(c) for c in cols)}) "
               f"VALUES ({_marks(len(cols))})")
        return self.execute(sql, [row[c] for c in cols]).lastrowid

    def _update(self, table: str, key_col: str, key, row: Dict) -> None:
        sets = ",".join(f"{qi(c)}=?" for c in row)
        sql = f"UPDATE {qi(table)} SET {sets} WHERE {qi(key_col)}=?"
        self.execute(sql, list(row.values()) + [key])

    # ---------- schema ----------
    def table_columns(self, table: str) -> List[str]:
        rows = self.execute("SELECT name FROM pragma_table_info(?)", (table,)).fetchall()
        return [r[0] for r in rows]

    def create_table(self, table: str) -> None:
        cols = ", ".join(f"{qi(c)} {t}" for c, t in SCHEMA[table])
        with self.conn:
            self.execute(f"CREATE TABLE IF NOT EXISTS {qi(table)} ({cols})")

    def check_schema(self, confirm: Callable[[str], bool]) -> None:
        """
        Missing tables are created when `confirm` agrees; a table whose
        columns differ from SCHEMA raises SchemaError.
        """
        for table, cols in SCHEMA.items():
            have = self.table_columns(table)
            if not have:
                if not confirm(f"Table {table} not found. Create it? [y/N] "):
                    raise SchemaError(f"Table {table} is missing from {self.path}.")
                self.create_table(table)
                continue
            want = [c for c, _ in cols]
            if [c.lower() for c in have] != [c.lower() for c in want]:
                raise SchemaError(
                    f"Table {table} columns {', '.join(have)} don't match expected {', '.join(want)}."
                )

    def create_all(self) -> None:
        for table in SCHEMA:
            self.create_table(table)

    # ---------- presets ----------
    def add_preset(self, preset: Dict, tag: str = "", group: str = "") -> int:
        """Insert a Presets row and its Keywords row; returns the new Lid."""
        with self.conn:
            lid = self._insert("Presets", preset)
            self._insert("Keywords", {"Kid": lid, "Tag": tag, "Group": group})
        return lid

    def update_preset(self, lid: int, fields: Dict) -> None:
        if not fields:
            return
        with self.conn:
            self._update("Presets", "Lid", lid, fields)

    def update_keywords(self, lid: int, fields: Dict) -> None:
        if not fields:
            return
        with self.conn:
            self._update("Keywords", "Kid", lid, fields)

    def delete_preset(self, lid: int) -> None:
        """Presets row plus its Keywords, Palettes and Ledmaps rows."""
        with self.conn:
            self.execute("DELETE FROM Palettes WHERE Plid=?", (lid,))
            self.execute("DELETE FROM Ledmaps WHERE Mlid=?", (lid,))
            self.execute("DELETE FROM Keywords WHERE Kid=?", (lid,))
            self.execute("DELETE FROM Presets WHERE Lid=?", (lid,))

    def get_preset(self, lid: int) -> Optional[dict]:
        rows = self.query("SELECT * FROM Presets WHERE Lid=?", (lid,))
        return rows[0] if rows else None

    def require_preset(self, lid: int) -> dict:
        row = self.get_preset(lid)
        if row is None:
            raise IntegrityError(f"Lid {lid} not found.")
        return row

    def get_keywords(self, lid: int) -> dict:
        rows = self.query(f"SELECT Tag, {qi('Group')} FROM Keywords WHERE Kid=?", (lid,))
        return rows[0] if rows else {"Tag": "", "Group": ""}

    def find_by_fingerprint(self, fp: str) -> List[dict]:
        """Stored presets whose Pdata contains fp as a substring."""
        return self.query(
            f"SELECT Lid, Pid, Pname, Type, Src, Tag, {qi('Group')} FROM Presets "
            "LEFT JOIN Keywords ON Presets.Lid = Keywords.Kid "
            "WHERE instr(Pdata, ?) > 0 ORDER BY Lid",
            (fp,),
        )

    def used_pids(self) -> set:
        return {r["Pid"] for r in self.query("SELECT DISTINCT Pid FROM Presets")}

    def pdata_for(self, lids: Iterable[int]) -> List[dict]:
        lids = list(lids)
        if not lids:
            return []
        return self.query(
            f"SELECT Lid, Pid, Type, Pdata FROM Presets WHERE Lid IN ({_marks(len(lids))}) ORDER BY Lid",
            lids,
        )

    # ---------- show / delete selection ----------
    def select_frame(self, filters: Dict[str, Sequence[str]], sort: Tuple[str, str] = DEFAULT_SORT,
                     with_src: bool = False) -> pd.DataFrame:
        cols = SHOW_COLUMNS + (["Src"] if with_src else [])
        where, params = build_where(filters)
        col, direction = sort
        direction = "DESC" if direction.upper() == "DESC" else "ASC"
        sql = (f"SELECT {','.join(qi(c) for c in cols)} FROM Presets "
               f"LEFT JOIN Keywords ON Presets.Lid = Keywords.Kid{where} "
               f"ORDER BY {qi(col)} {direction}")
        if col != "Lid":
            sql += ", Lid ASC"
        return self.frame(sql, params)

    def select_lids(self, filters: Dict[str, Sequence[str]], sort: Tuple[str, str] = DEFAULT_SORT) -> List[int]:
        df = self.select_frame(filters, sort)
        return [int(x) for x in df["Lid"].tolist()]

    # ---------- palettes / ledmaps ----------
    def palettes_for(self, lids: Iterable[int]) -> List[dict]:
        lids = list(lids)
        if not lids:
            return []
        return self.query(
            f"SELECT * FROM Palettes WHERE Plid IN ({_marks(len(lids))}) ORDER BY Plid, Plnum", lids
        )

    def ledmaps_for(self, lids: Iterable[int]) -> List[dict]:
        lids = list(lids)
        if not lids:
            return []
        return self.query(
            f"SELECT * FROM Ledmaps WHERE Mlid IN ({_marks(len(lids))}) ORDER BY Mlid, Mnum", lids
        )

    def has_palette(self, lid: int, plnum: int) -> bool:
        return bool(self.query("SELECT Palid FROM Palettes WHERE Plid=? AND Plnum=?", (lid, plnum)))

    def has_ledmap(self, lid: int) -> bool:
        return bool(self.query("SELECT Mapid FROM Ledmaps WHERE Mlid=?", (lid,)))

    def add_palette(self, lid: int, plnum: int, data: str) -> int:
        with self.conn:
            return self._insert("Palettes", {"Plid": lid, "Plnum": plnum, "Pldata": data})

    def add_ledmap(self, lid: int, mnum: int, data: str) -> int:
        with self.conn:
            return self._insert("Ledmaps", {"Mlid": lid, "Mnum": mnum, "Mdata": data})

    # ---------- dump ----------
    def table_rows(self, table: str) -> Tuple[List[str], List[tuple]]:
        match = {t.lower(): t for t in SCHEMA}.get(table.lower())
        if not match:
            raise CommandError(f"Unknown table: {table}. Use one of {', '.join(SCHEMA)}.")
        cur = self.execute(f"SELECT * FROM {qi(match)}")
        cols = [d[0] for d in cur.description]
        return cols, [tuple(r) for r in cur.fetchall()]


def open_library(path, confirm: Callable[[str], bool]) -> LibraryDB:
    """
    Open (or create) the library file and verify its schema.
    A missing file is only created when `confirm` agrees.
    """
    p = Path(path)
    if not p.exists():
        if not confirm(f"Database file {p} not found. Create a new one? [y/N] "):
            raise SchemaError(f"No database: {p}")
        if p.parent and not p.parent.exists():
            p.parent.mkdir(parents=True, exist_ok=True)
        db = LibraryDB(p)
        db.create_all()
        return db
    db = LibraryDB(p)
    try:
        db.check_schema(confirm)
    except SchemaError:
        db.close()
        raise
    return db
