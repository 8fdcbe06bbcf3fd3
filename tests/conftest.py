"""Shared pytest fixtures for autohand-acp tests."""

from __future__ import annotations

import json
import os
import stat
import sys
from pathlib import Path
from typing import Any

import pytest
from acp.schema import AllowedOutcome, DeniedOutcome, ReadTextFileResponse, RequestPermissionResponse

# Settings are read from the environment on every call; make sure a developer's
# own Autohand configuration never leaks into the tests.
for key in list(os.environ):
    if key.startswith("AUTOHAND_") or key.startswith("STUB_AGENT_"):
        os.environ.pop(key, None)


@pytest.fixture
def anyio_backend() -> str:
    """The bridge is asyncio-native (subprocesses, uvicorn)."""
    return "asyncio"


@pytest.fixture(autouse=True)
def autohand_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolated AUTOHAND_HOME with an existing config file."""
    home = tmp_path / "autohand-home"
    (home / "sessions").mkdir(parents=True)
    config = home / "config.json"
    config.write_text("{}", encoding="utf-8")
    monkeypatch.setenv("AUTOHAND_HOME", str(home))
    monkeypatch.setenv("AUTOHAND_CONFIG", str(config))
    return home


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "workspace"
    path.mkdir()
    return path


class FakeClient:
    """Records everything the bridge sends to the editor."""

    def __init__(self) -> None:
        self.updates: list[tuple[str, Any]] = []
        self.permission_requests: list[dict] = []
        # Option ids handed out in order; None answers "cancelled".
        self.permission_answers: list[str | None] = []
        self.files: dict[str, str] = {}
        self.read_requests: list[str] = []
        self.fail_updates = False

    async def session_update(self, session_id: str, update: Any, **kwargs: Any) -> None:
        if self.fail_updates:
            raise RuntimeError("client went away")
        self.updates.append((session_id, update))

    async def request_permission(self, options, session_id, tool_call, **kwargs: Any) -> RequestPermissionResponse:
        self.permission_requests.append({"options": options, "session_id": session_id, "tool_call": tool_call})
        answer = self.permission_answers.pop(0) if self.permission_answers else None
        if answer is None:
            return RequestPermissionResponse(outcome=DeniedOutcome(outcome="cancelled"))
        return RequestPermissionResponse(outcome=AllowedOutcome(outcome="selected", option_id=answer))

    async def read_text_file(self, path: str, session_id: str, **kwargs: Any) -> ReadTextFileResponse:
        self.read_requests.append(path)
        if path not in self.files:
            raise FileNotFoundError(path)
        return ReadTextFileResponse(content=self.files[path])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def for_session(self, session_id: str) -> list[Any]:
        return [update for sid, update in self.updates if sid == session_id]

    def kinds(self, session_id: str) -> list[str]:
        return [update.session_update for update in self.for_session(session_id)]

    def of_kind(self, session_id: str, kind: str) -> list[Any]:
        return [update for update in self.for_session(session_id) if update.session_update == kind]

    def text(self, session_id: str, kind: str = "agent_message_chunk") -> str:
        return "".join(update.content.text for update in self.of_kind(session_id, kind))


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


STUB_AGENT = '''\
#!{python}
"""Stand-in for the autohand CLI driven by STUB_AGENT_* variables."""
import json
import os
import sys
import time
import uuid

args = sys.argv[1:]


def arg(name):
    if name in args:
        index = args.index(name)
        if index + 1 < len(args):
            return args[index + 1]
    return ""


record = os.environ.get("STUB_AGENT_RECORD")
if record:
    with open(record, "a", encoding="utf-8") as handle:
        handle.write(json.dumps({{
            "args": args,
            "cwd": os.getcwd(),
            "callback": os.environ.get("AUTOHAND_PERMISSION_CALLBACK_URL"),
            "home": os.environ.get("AUTOHAND_HOME"),
        }}) + "\\n")

mode = os.environ.get("STUB_AGENT_MODE", "echo")
prompt = arg("--prompt")
home = os.environ.get("AUTOHAND_HOME", "")

if mode == "sleep":
    print("working", flush=True)
    time.sleep(30)
elif mode == "fail":
    sys.stderr.write("something broke\\n")
    sys.exit(3)
elif mode == "slow":
    tag = prompt.split()[-1]
    steps = 5 if tag == "first" else 1
    for step in range(steps):
        print(tag + "-" + str(step), flush=True)
        time.sleep(0.1)
elif mode == "resume":
    print("resumed " + args[1])
elif mode == "thinking":
    sys.stdout.write("<thinking>planning the change</thinking>")
    sys.stdout.flush()
    time.sleep(0.1)
    print("All done.")
elif mode == "tools":
    session_id = "stub-" + uuid.uuid4().hex
    directory = os.path.join(home, "sessions", session_id)
    os.makedirs(directory)
    index_path = os.path.join(home, "sessions", "index.json")
    try:
        with open(index_path, encoding="utf-8") as handle:
            index = json.load(handle)
    except (OSError, ValueError):
        index = {{"sessions": []}}
    index["sessions"].append({{
        "id": session_id,
        "projectPath": os.path.abspath(arg("--path")),
        "createdAt": "2026-01-01T00:00:00.000Z",
    }})
    with open(index_path, "w", encoding="utf-8") as handle:
        json.dump(index, handle)
    events = [
        {{"role": "user", "content": prompt}},
        {{"role": "assistant", "content": "Reading.", "toolCalls": [
            {{"id": "call-1", "tool": "read_file", "args": {{"path": "README.md"}}}},
        ]}},
        {{"role": "tool", "name": "read_file", "tool_call_id": "call-1", "content": "hello world"}},
        {{"role": "assistant", "content": "Done."}},
    ]
    with open(os.path.join(directory, "conversation.jsonl"), "w", encoding="utf-8") as handle:
        for event in events:
            handle.write(json.dumps(event) + "\\n")
    print("Done.")
else:
    print("Echo: " + prompt)
'''


@pytest.fixture
def stub_agent(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Executable fake CLI installed as AUTOHAND_CMD."""
    script = tmp_path / "autohand-stub"
    script.write_text(STUB_AGENT.format(python=sys.executable), encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("AUTOHAND_CMD", str(script))
    return script


@pytest.fixture
def stub_record(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Path where the stub appends one JSON line per invocation, plus a reader."""
    path = tmp_path / "invocations.jsonl"
    monkeypatch.setenv("STUB_AGENT_RECORD", str(path))

    def read() -> list[dict]:
        if not path.exists():
            return []
        return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]

    return read


def write_index(home: Path, entries: list[dict]) -> None:
    (home / "sessions").mkdir(parents=True, exist_ok=True)
    (home / "sessions" / "index.json").write_text(json.dumps({"sessions": entries}), encoding="utf-8")


def write_conversation(home: Path, session_id: str, events: list[Any]) -> Path:
    directory = home / "sessions" / session_id
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "conversation.jsonl"
    lines = [event if isinstance(event, str) else json.dumps(event) for event in events]
    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
    return path


def make_session(client: Any = None, *, session_id: str = "session-1", cwd: str = "/work", home: Path | None = None):
    """A session built the way the registry builds one, without registering it."""
    from autohand_acp import options
    from autohand_acp.relay import UpdateRelay
    from autohand_acp.session import Session

    modes = options.build_modes()
    models = options.build_models()
    return Session(
        id=session_id,
        cwd=cwd,
        home=home or Path(os.environ["AUTOHAND_HOME"]),
        modes=modes,
        mode_id=options.default_mode(modes),
        models=models,
        model_id=options.default_model(models),
        commands=options.build_commands(),
        config=options.SessionConfig.from_settings(),
        relay=UpdateRelay(client, session_id),
    )
