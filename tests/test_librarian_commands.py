"""
Tests for the command handlers, driven through run_command() the way the prompt drives them.
"""

import json

import pandas as pd
import pytest

from conftest import playlist_body, preset_body, store, write_doc
from librarian_commands import HELP, format_table, run_command, state_payloads
from wled_core import canonicalize, pdata_body


@pytest.fixture
def tagged(db):
    store(db, 5, preset_body("Red", fx=1), tag="alpha", group="x")
    store(db, 2, preset_body("Blue", fx=2), tag="beta")
    store(db, 9, preset_body("Green", fx=3), tag="alpha,beta", group="x")
    return db


def shown_names(out):
    return [n for n in ("Red", "Blue", "Green") if f" {n} " in out]


# =============================================================================
# show
# =============================================================================

class TestShow:

    def test_or_within_key(self, tagged, make_session, capsys):
        run_command(make_session(), "show tag:alpha,beta")
        out = capsys.readouterr().out
        assert shown_names(out) == ["Red", "Blue", "Green"]
        assert "3 presets" in out

    def test_and_across_keys(self, tagged, make_session, capsys):
        run_command(make_session(), "show tag:beta group:x")
        out = capsys.readouterr().out
        assert shown_names(out) == ["Green"]
        assert "1 preset" in out

    def test_nothing_matches(self, tagged, make_session, capsys):
        run_command(make_session(), "show tag:gamma")
        assert "No presets selected." in capsys.readouterr().out

    def test_sort_applies(self, tagged, make_session, capsys):
        s = make_session()
        run_command(s, "sort pid:d")
        assert s.sort == ("Pid", "DESC")
        assert "Sorting set to Pid DESC" in capsys.readouterr().out
        run_command(s, "show")
        out = capsys.readouterr().out
        assert out.index(" Green ") < out.index(" Red ") < out.index(" Blue ")

    def test_pdata_flag(self, tagged, make_session, capsys):
        run_command(make_session(), "show lid:2 pdata")
        assert '"2":{"on":true,"n":"Blue"' in capsys.readouterr().out

    def test_src_column(self, tagged, make_session, capsys):
        run_command(make_session(), "show lid:1 src")
        assert "test.json" in capsys.readouterr().out

    def test_bad_number_reported(self, tagged, make_session, capsys):
        assert run_command(make_session(), "show pid:x") is True
        assert "pid" in capsys.readouterr().out

    def test_format_table(self):
        df = pd.DataFrame([[1, "Red", None]], columns=["Pid", "Pname", "Tag"])
        assert format_table(df) == ["Pid  Pname  Tag", "---  -----  ---", "1    Red"]


# =============================================================================
# show + add / remove / export
# =============================================================================

class TestChained:

    def test_add_words(self, tagged, make_session, capsys):
        run_command(make_session(), "show tag:alpha add tag:gamma group:y")
        out = capsys.readouterr().out
        assert "2 presets updated." in out
        assert tagged.get_keywords(1) == {"Tag": "alpha,gamma", "Group": "x,y"}
        assert tagged.get_keywords(2)["Tag"] == "beta"

    def test_add_existing_word_counts_nothing(self, tagged, make_session, capsys):
        run_command(make_session(), "show lid:1 add tag:alpha")
        assert "0 presets updated." in capsys.readouterr().out

    def test_remove_words(self, tagged, make_session, capsys):
        run_command(make_session(), "show tag:beta remove tag:beta")
        assert "2 presets updated." in capsys.readouterr().out
        assert tagged.get_keywords(3)["Tag"] == "alpha"
        assert tagged.get_keywords(2)["Tag"] == ""

    def test_add_needs_words(self, tagged, make_session, capsys):
        run_command(make_session(), "show tag:alpha add")
        assert "needs tag" in capsys.readouterr().out

    def test_export_file(self, tagged, make_session, tmp_path, capsys):
        target = tmp_path / "export.json"
        run_command(make_session(), f"show group:x export file:{target}")
        doc = json.loads(target.read_text(encoding="utf-8"))
        assert list(doc) == ["0", "5", "9"]
        assert "Exported 2 presets" in capsys.readouterr().out

    def test_export_wled(self, tagged, make_session, fake_client):
        run_command(make_session(), "show lid:2 export wled")
        assert [n for n, _ in fake_client.uploads] == ["presets.json"]
        assert fake_client.resets == 1

    def test_export_to_missing_folder_reports(self, tagged, make_session, tmp_path, capsys):
        s = make_session()
        assert run_command(s, f"show lid:2 export file:{tmp_path / 'nodir' / 'presets.json'}") is True
        out = capsys.readouterr().out
        assert "[ERROR]" in out
        assert "Can't write" in out

    def test_export_needs_target(self, tagged, make_session, capsys):
        run_command(make_session(), "show lid:2 export")
        assert "Export file or wled not specified." in capsys.readouterr().out

    def test_secondary_only_after_show(self, tagged, make_session, capsys):
        run_command(make_session(), "delete lid:1 add tag:x")
        assert "can only follow show" in capsys.readouterr().out
        assert tagged.get_preset(1) is not None


# =============================================================================
# show ... wled
# =============================================================================

class TestShowOnDevice:

    def test_preset_payloads(self):
        pdata = canonicalize(preset_body("A"), 4)
        on, seg = state_payloads(pdata, "preset")
        assert on == '{"on":true}'
        assert json.loads(seg)["seg"][0]["stop"] == 30

    def test_playlist_payload(self):
        pdata = canonicalize(playlist_body("P", [1, 2]), 6)
        assert json.loads(state_payloads(pdata, "playlist")[1])["playlist"]["ps"] == [1, 2]

    def test_segmentless_preset_sent_whole(self):
        assert state_payloads('"3":{"on":true,"bri":9}', "preset") == ['{"on":true,"bri":9}']

    def test_first_row_sent(self, tagged, make_session, fake_client):
        run_command(make_session(), "show tag:alpha wled:10.0.0.7")
        assert len(fake_client.states) == 2
        assert json.loads(fake_client.states[1])["seg"][0]["fx"] == 1


# =============================================================================
# delete / dupl / edit
# =============================================================================

class TestModify:

    def test_delete_confirmed(self, tagged, make_session, capsys):
        tagged.add_palette(1, 256, "{}")
        s = make_session("y")
        run_command(s, "delete tag:alpha")
        assert "2 presets deleted." in capsys.readouterr().out
        assert [r["Lid"] for r in tagged.query("SELECT Lid FROM Presets")] == [2]
        assert tagged.query("SELECT * FROM Palettes") == []
        assert s.prompts.prompts == ["Delete these presets? [y/N] -> "]

    def test_delete_default_is_no(self, tagged, make_session, capsys):
        run_command(make_session(""), "delete lid:1")
        assert "Nothing deleted." in capsys.readouterr().out
        assert tagged.get_preset(1) is not None

    def test_delete_needs_filter(self, tagged, make_session, capsys):
        run_command(make_session(), "delete")
        assert "Delete requires" in capsys.readouterr().out

    def test_dupl_with_new_pid(self, tagged, make_session, capsys):
        tagged.add_palette(3, 250, '{"palette":[1]}')
        run_command(make_session(), "dupl lid:3 pid:99")
        assert "Lid 4 created." in capsys.readouterr().out
        row = tagged.get_preset(4)
        assert row["Pid"] == 99
        assert row["Pdata"].startswith('"99":')
        assert row["Src"] == "Dupl of lid 3"
        assert row["Pname"] == "Green"
        assert tagged.get_keywords(4) == {"Tag": "", "Group": ""}
        assert [p["Plnum"] for p in tagged.palettes_for([4])] == [250]

    def test_dupl_copies_ledmap(self, db, make_session):
        lid = store(db, 1, preset_body("M", ledmap=3))
        db.add_ledmap(lid, 3, '{"map":[0]}')
        run_command(make_session(), f"dupl lid:{lid} pname:'Map copy' tag:copy")
        assert [m["Mnum"] for m in db.ledmaps_for([2])] == [3]
        assert db.get_preset(2)["Pname"] == "Map copy"
        assert db.get_keywords(2)["Tag"] == "copy"

    def test_dupl_missing_lid(self, tagged, make_session, capsys):
        run_command(make_session(), "dupl lid:77")
        assert "Lid 77 not found." in capsys.readouterr().out

    def test_edit_pid_renumbers_pdata(self, tagged, make_session):
        run_command(make_session(), "edit lid:2 pid:20 pname:'Sky Blue'")
        row = tagged.get_preset(2)
        assert (row["Pid"], row["Pname"]) == (20, "Sky Blue")
        assert row["Pdata"].startswith('"20":')

    def test_edit_errors(self, tagged, make_session, capsys):
        s = make_session()
        run_command(s, "edit lid:2")
        run_command(s, "edit lid:1,2 pname:x")
        run_command(s, "edit lid:2 pid:900")
        out = capsys.readouterr().out
        assert "Nothing to change." in out
        assert "exactly one lid" in out
        assert "pid must be 0..250" in out


# =============================================================================
# import / dump / help / quit
# =============================================================================

class TestMisc:

    def test_import_then_show(self, db, make_session, tmp_path, capsys):
        src = write_doc(tmp_path / "presets.json", {1: preset_body("A", fx=1), 2: preset_body("B", fx=2),
                                                    3: playlist_body("PL", [1, 2])})
        s = make_session()
        run_command(s, f"import file:{src}")
        capsys.readouterr()
        run_command(s, "show tag:new")
        assert "3 presets" in capsys.readouterr().out

    def test_import_palette_file_refused(self, db, make_session, capsys):
        run_command(make_session(), "import file:palette3.json")
        assert "not implemented" in capsys.readouterr().out

    def test_import_missing_file(self, db, make_session, tmp_path, capsys):
        run_command(make_session(), f"import file:{tmp_path / 'gone.json'}")
        assert "File not found" in capsys.readouterr().out

    def test_import_from_device(self, db, make_session, fake_client):
        fake_client.files["presets.json"] = json.dumps({"0": {}, "3": preset_body("Dev")})
        run_command(make_session(), "import wled tag:live")
        assert db.get_keywords(1)["Tag"] == "live"
        assert pdata_body(db.get_preset(1)["Pdata"])["n"] == "Dev"

    def test_dump(self, tagged, make_session, capsys):
        run_command(make_session(), "dump tbl:keywords")
        out = capsys.readouterr().out
        assert "Kid | Tag | Group" in out
        assert "3 records" in out

    def test_help(self, db, make_session, capsys):
        run_command(make_session(), "help dupl")
        assert "Copies one preset" in capsys.readouterr().out

    @pytest.mark.parametrize("topic", sorted(HELP))
    def test_every_help_topic_reachable(self, db, make_session, capsys, topic):
        run_command(make_session(), f"help {topic}")
        out = capsys.readouterr().out
        assert HELP[topic].splitlines()[0] in out
        assert "can only follow" not in out

    def test_quit(self, db, make_session):
        s = make_session()
        assert run_command(s, "") is True
        assert run_command(s, "q") is False
        assert s.running is False
