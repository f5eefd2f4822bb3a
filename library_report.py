#!/usr/bin/env python3
# library_report.py
# GAL 26-10-16  V0.2.0
# Preset library → Excel workbook
#
# Produces:
#   • Library   : one row per preset with its Tag/Group
#   • Presets   : Presets table (without the Pdata text)
#   • Keywords / Palettes / Ledmaps: raw tables
#
# Requires: pandas, openpyxl
# Install once via:  pip install pandas openpyxl

import datetime
import sqlite3
import sys
from pathlib import Path

import pandas as pd

DEF_DB = "wled_librarian.dbs"
DEF_OUT = "wled_library.xlsx"

SHEETS = {
    "Library": (
        'SELECT Presets.Lid, Pid, Pname, Qll, Type, Src, Date, Tag, "Group" '
        "FROM Presets LEFT JOIN Keywords ON Presets.Lid = Keywords.Kid ORDER BY Presets.Lid"
    ),
    "Presets":  "SELECT Lid, Pid, Pname, Qll, Type, Src, Date FROM Presets ORDER BY Lid",
    "Keywords": "SELECT * FROM Keywords ORDER BY Kid",
    "Palettes": "SELECT * FROM Palettes ORDER BY Plid, Plnum",
    "Ledmaps":  "SELECT * FROM Ledmaps ORDER BY Mlid, Mnum",
}


def read_sheets(con) -> dict:
    return {name: pd.read_sql_query(sql, con) for name, sql in SHEETS.items()}


def autofit(writer):
    """Auto-fit all columns (max width 60)."""
    for ws in writer.sheets.values():
        for col_cells in ws.columns:
            max_len = max(
                (len(str(c.value)) if c.value is not None else 0) for c in col_cells
            )
            ws.column_dimensions[col_cells[0].column_letter].width = min(
                max_len + 2, 60
            )


def main(db: str = DEF_DB, out: str = DEF_OUT) -> Path:
    if not Path(db).is_file():
        print(f"[ERROR] Library not found: {db}")
        sys.exit(1)
    con = sqlite3.connect(db)
    try:
        frames = read_sheets(con)
    finally:
        con.close()

    out_path = Path(out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(out_path, engine="openpyxl") as writer:
        for name, df in frames.items():
            df.to_excel(writer, sheet_name=name, index=False)
        autofit(writer)

    stamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M")
    print(f"[DONE] {len(frames['Presets'])} presets written to {out_path} ({stamp})")
    return out_path


def cli() -> None:
    db = sys.argv[1] if len(sys.argv) > 1 else DEF_DB
    out = sys.argv[2] if len(sys.argv) > 2 else DEF_OUT
    main(db, out)


if __name__ == "__main__":
    cli()
