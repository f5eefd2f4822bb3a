"""
Shared fixtures: temporary library, scripted prompt answers, fake controller.
Nothing here touches the network or a real terminal.
"""

import json

import pytest

from librarian_commands import Session
from librarian_db import LibraryDB
from line_input import answer_is_yes
from wled_core import canonicalize, preset_type


class Answers:
    """Stands in for the interactive prompt; answers are consumed in order."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.prompts = []

    def ask(self, prompt):
        self.prompts.append(prompt)
        if not self.answers:
            raise AssertionError(f"unexpected prompt: {prompt}")
        return self.answers.pop(0)

    def confirm(self, prompt):
        return answer_is_yes(self.ask(prompt), prompt)


class FakeClient:
    """Records what would have gone to a controller."""

    def __init__(self, ip="4.3.2.1", files=None):
        self.ip = ip
        self.files = dict(files or {})
        self.fetched = []
        self.uploads = []
        self.states = []
        self.resets = 0

    def fetch(self, name):
        self.fetched.append(name)
        return self.files.get(name)

    def upload(self, path):
        self.uploads.append((path.name, path.read_text(encoding="utf-8")))

    def post_state(self, payload):
        self.states.append(payload)

    def reset(self):
        self.resets += 1


def preset_body(name, fx=0, pal=0, **extra):
    body = {
        "on": True, "n": name, "bri": 128,
        "seg": [{"id": 0, "start": 0, "stop": 30, "col": [[255, 0, 0], [0, 0, 0], [0, 0, 0]],
                 "fx": fx, "sx": 128, "ix": 128, "pal": pal, "sel": True}],
    }
    body.update(extra)
    return body


def playlist_body(name, ps):
    return {"on": True, "n": name,
            "playlist": {"ps": list(ps), "dur": [100] * len(ps), "transition": [7] * len(ps),
                         "repeat": 0, "end": 0, "r": False}}


def write_doc(path, presets, sentinel=True):
    doc = {"0": {}} if sentinel else {}
    doc.update({str(k): v for k, v in presets.items()})
    path.write_text(json.dumps(doc), encoding="utf-8")
    return path


def store(db, pid, body, tag="", group="", src="test.json"):
    """Insert a preset the way an import would store it."""
    return db.add_preset({
        "Pid": pid, "Pname": body.get("n", ""), "Qll": body.get("ql", ""),
        "Pdata": canonicalize(body, pid), "Type": preset_type(body),
        "Src": src, "Date": "2026-10-01 12:00:00",
    }, tag, group)


@pytest.fixture
def db(tmp_path):
    lib = LibraryDB(tmp_path / "library.dbs")
    lib.create_all()
    yield lib
    lib.close()


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def make_session(db, fake_client):
    def _make(*answers, **cfg):
        prompts = Answers(*answers)
        config = {"default_tag": "new", "pid_min": 1, "pid_max": 250,
                  "check_duplicates": True, "reformat": True}
        config.update(cfg)
        session = Session(db=db, cfg=config, ask=prompts.ask, confirm=prompts.confirm,
                          client_factory=lambda ip: fake_client)
        session.prompts = prompts
        return session
    return _make
