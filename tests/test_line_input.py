"""
Tests for the raw keystroke line editor.

Bytes are fed straight into LineEditor.feed(); echo goes to a StringIO.
"""

import io

import pytest

from line_input import (
    POSIX_KEYS, WINDOWS_KEYS, EditorState, LineEditor, answer_is_yes, backspace, commit,
    cursor_left, cursor_right, delete_char, history_next, history_prev, insert_char,
    tab_complete,
)


class ByteSource:
    def __init__(self, *chunks):
        self.chunks = list(chunks)

    def read_available(self):
        return self.chunks.pop(0) if self.chunks else b""


@pytest.fixture
def editor():
    ed = LineEditor(ByteSource(), POSIX_KEYS, out=io.StringIO(), headline=lambda: "HEADLINE")
    ed.start("-> ")
    return ed


def typed(ed, data):
    assert ed.feed(data) is True
    return ed.take_line()


# =============================================================================
# Transition functions
# =============================================================================

class TestTransitions:

    def test_insert_in_middle(self):
        st = EditorState(buffer="ac", cursor=1)
        echo = insert_char(st, "b")
        assert (st.buffer, st.cursor) == ("abc", 2)
        assert echo == "bc\b"

    def test_cursor_clamped(self):
        st = EditorState(buffer="ab", cursor=0)
        assert cursor_left(st) == ""
        assert st.cursor == 0
        st.cursor = 2
        assert cursor_right(st) == ""
        assert st.cursor == 2

    def test_delete_and_backspace_at_edges(self):
        st = EditorState(buffer="ab", cursor=2)
        assert delete_char(st) == ""
        assert backspace(st) != ""
        assert (st.buffer, st.cursor) == ("a", 1)
        st.cursor = 0
        assert backspace(st) == ""
        assert delete_char(st) != ""
        assert (st.buffer, st.cursor) == ("", 0)

    def test_history_bounds(self):
        st = EditorState(history=["one", "two"], hptr=2)
        history_prev(st)
        assert st.buffer == "two"
        history_prev(st)
        history_prev(st)
        assert (st.buffer, st.hptr) == ("one", 0)
        history_next(st)
        history_next(st)
        assert (st.buffer, st.hptr) == ("", 2)
        assert history_next(st) == ""
        assert st.hptr == 2

    def test_commit_records_history_once(self):
        st = EditorState(buffer="show")
        assert commit(st)[0] is True
        st.buffer = "show"
        commit(st)
        assert st.history == ["show"]
        assert st.hptr == 1

    def test_single_shot_not_recorded(self):
        st = EditorState(buffer="y", single_shot=True, prompt="Continue? [y/N] ")
        assert commit(st)[0] is True
        assert st.history == []

    def test_empty_enter(self):
        assert commit(EditorState(prompt="Delete these presets? [y/N] -> "))[0] is True
        assert commit(EditorState(prompt="-> "))[0] is False

    def test_no_newline_flag(self):
        assert commit(EditorState(buffer="x", no_newline=True)) == (True, "")


# =============================================================================
# Tab completion
# =============================================================================

class TestTabCompletion:

    ENTRIES = [("palettes", True), ("presets.json", False), ("presets_old.json", False)]

    def lister(self, folder):
        return self.ENTRIES if folder == "." else [("xmas.json", False)]

    def test_common_prefix(self):
        st = EditorState(buffer="import file:pr", cursor=14)
        tab_complete(st, self.lister)
        assert st.buffer == "import file:presets"

    def test_ambiguous_lists_candidates(self):
        st = EditorState(buffer="import file:presets", cursor=19, prompt_shown=True)
        echo = tab_complete(st, self.lister)
        assert "presets.json" in echo and "presets_old.json" in echo
        assert st.buffer == "import file:presets"
        assert st.prompt_shown is False

    def test_directory_gets_separator(self):
        st = EditorState(buffer="import file:pa", cursor=14)
        tab_complete(st, self.lister)
        assert st.buffer == "import file:palettes/"

    def test_subfolder(self):
        st = EditorState(buffer="import file:palettes/x", cursor=22)
        tab_complete(st, self.lister)
        assert st.buffer == "import file:palettes/xmas.json"

    def test_no_file_token(self):
        st = EditorState(buffer="show tag:x", cursor=10)
        assert tab_complete(st, self.lister) == ""
        assert st.buffer == "show tag:x"

    def test_real_directory(self, tmp_path, monkeypatch):
        (tmp_path / "presets.json").write_text("{}")
        monkeypatch.chdir(tmp_path)
        st = EditorState(buffer="import file:pre", cursor=15)
        tab_complete(st)
        assert st.buffer == "import file:presets.json"


# =============================================================================
# LineEditor byte decoding
# =============================================================================

class TestLineEditor:

    def test_plain_line(self, editor):
        assert typed(editor, b"show tag:x\n") == "show tag:x"

    def test_partial_line_not_ready(self, editor):
        assert editor.feed(b"sho") is False
        assert typed(editor, b"w\n") == "show"

    def test_arrow_keys_edit_middle(self, editor):
        assert typed(editor, b"abc\x1b[D\x1b[DX\n") == "aXbc"

    def test_right_arrow(self, editor):
        assert typed(editor, b"ac\x1b[D\x1b[D\x1b[Cb\n") == "abc"

    def test_delete_key(self, editor):
        assert typed(editor, b"abc\x1b[D\x1b[D\x1b[3~\n") == "ac"

    def test_backspace(self, editor):
        assert typed(editor, b"abc\x7f\n") == "ab"

    def test_history_recall(self, editor):
        typed(editor, b"one\n")
        editor.start("-> ")
        typed(editor, b"two\n")
        editor.start("-> ")
        assert typed(editor, b"\x1b[A\x1b[A\n") == "one"
        editor.start("-> ")
        assert typed(editor, b"\x1b[A\x1b[A\x1b[B\n") == "one"
        assert editor.state.history == ["one", "two", "one"]

    def test_home_shows_headline(self, editor):
        editor.feed(b"\x1b[H")
        assert "HEADLINE" in editor.out.getvalue()
        assert typed(editor, b"x\n") == "x"

    def test_unknown_escape_ignored(self, editor):
        assert typed(editor, b"a\x1b[Fb\n") == "ab"

    def test_lone_escape_keeps_following_keys(self, editor):
        assert typed(editor, b"a\x1bbcd\n") == "abcd"

    def test_escape_then_arrow(self, editor):
        assert typed(editor, b"ab\x1b\x1b[DX\n") == "aXb"

    def test_two_lines_in_one_read(self, editor):
        assert typed(editor, b"one\ntwo\n") == "one"
        editor.start("-> ")
        assert typed(editor, b"") == "two"

    def test_utf8_input(self, editor):
        assert typed(editor, "grün\n".encode("utf-8")) == "grün"

    def test_windows_key_table(self):
        ed = LineEditor(ByteSource(), WINDOWS_KEYS, out=io.StringIO())
        ed.start("-> ")
        assert typed(ed, b"abc\x08\r") == "ab"

    def test_poll_reads_source(self):
        ed = LineEditor(ByteSource(b"sh", b"ow\n"), POSIX_KEYS, out=io.StringIO())
        ed.start("-> ")
        assert ed.poll() is False
        assert ed.poll() is True
        assert ed.take_line() == "show"

    def test_ask_is_single_shot(self):
        ed = LineEditor(ByteSource(b"y\n"), POSIX_KEYS, out=io.StringIO(), idle=0)
        assert ed.confirm("Continue? [y/N] -> ") is True
        assert ed.state.history == []


def test_answer_is_yes():
    assert answer_is_yes("Y", "[y/N]") is True
    assert answer_is_yes("no", "[y/N]") is False
    assert answer_is_yes("", "Continue? [y/N]") is False
    assert answer_is_yes("", "Continue? [Y/n]") is True
