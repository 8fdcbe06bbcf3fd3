"""Tests for session creation, fork, resume, load and settings changes."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from autohand_acp.errors import InvalidArgument, SessionBusy, UnknownSession
from autohand_acp.models import HistoryTurn
from autohand_acp.registry import SessionRegistry
from autohand_acp.session import ActiveRun
from conftest import FakeClient, write_conversation, write_index


class FakeExecutor:
    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []

    async def __call__(self, session, prompt) -> str:
        self.calls.append((session.id, prompt))
        return "end_turn"


@pytest.fixture
def registry(client: FakeClient) -> SessionRegistry:
    return SessionRegistry(FakeExecutor(), client)


async def settle() -> None:
    """Let callbacks scheduled with call_soon run and the relay drain."""
    await asyncio.sleep(0.01)


class TestCreate:
    @pytest.mark.anyio
    async def test_create_announces_commands(self, registry: SessionRegistry, client: FakeClient) -> None:
        session = registry.create("/work")
        assert session.id in registry
        assert registry.get(session.id) is session
        assert session.mode_id == "default"
        assert client.updates == []
        await settle()
        assert client.kinds(session.id) == ["available_commands_update"]

    @pytest.mark.anyio
    async def test_relative_cwd_is_rejected(self, registry: SessionRegistry) -> None:
        with pytest.raises(InvalidArgument):
            registry.create("relative/path")
        with pytest.raises(InvalidArgument):
            registry.create("")
        assert len(registry) == 0

    @pytest.mark.anyio
    async def test_unknown_session(self, registry: SessionRegistry) -> None:
        with pytest.raises(UnknownSession):
            registry.get("nope")

    @pytest.mark.anyio
    async def test_sessions_are_isolated(self, registry: SessionRegistry) -> None:
        first = registry.create("/one")
        second = registry.create("/two")
        registry.set_config_option(first.id, "dry_run", "enabled")
        assert first.config.dry_run is True
        assert second.config.dry_run is False
        assert first.scheduler is not second.scheduler


class TestFork:
    @pytest.mark.anyio
    async def test_fork_copies_state_by_value(self, registry: SessionRegistry, client: FakeClient) -> None:
        parent = registry.create("/work")
        parent.title = "Parent"
        parent.history.append(HistoryTurn(role="user", content="hello"))
        registry.set_config_option(parent.id, "auto_commit", "enabled")
        registry.set_mode(parent.id, "code")

        fork = registry.fork(parent.id, "/other")
        assert fork.id != parent.id
        assert fork.parent_id == parent.id
        assert fork.cwd == "/other"
        assert fork.title == "Parent (fork)"
        assert fork.mode_id == "code"
        assert fork.config.auto_commit is True
        assert [turn.content for turn in fork.history] == ["hello"]

        fork.history.append(HistoryTurn(role="user", content="only in fork"))
        registry.set_config_option(fork.id, "auto_commit", "disabled")
        assert len(parent.history) == 1
        assert parent.config.auto_commit is True

        await settle()
        assert client.text(fork.id) == f"Forked from session {parent.id[:8]}. History preserved.\n"

    @pytest.mark.anyio
    async def test_fork_unknown_parent(self, registry: SessionRegistry) -> None:
        with pytest.raises(UnknownSession):
            registry.fork("missing", "/work")


class TestResume:
    @pytest.mark.anyio
    async def test_resume_requires_index_entry(self, registry: SessionRegistry) -> None:
        with pytest.raises(UnknownSession) as excinfo:
            await registry.resume("not-there", "/work")
        assert excinfo.value.message == "Session not found."

    @pytest.mark.anyio
    async def test_resume_binds_log_at_end(
        self, registry: SessionRegistry, client: FakeClient, autohand_home: Path
    ) -> None:
        write_index(autohand_home, [{"id": "stored-1234", "projectPath": "/work"}])
        path = write_conversation(autohand_home, "stored-1234", [{"role": "user", "content": "old"}])

        session = await registry.resume("stored-1234", "/work")
        assert session.id == "stored-1234"
        assert session.title == "Resumed: stored-1"
        assert session.cursor.path == path
        assert session.cursor.offset == path.stat().st_size

        await settle()
        (info,) = client.of_kind(session.id, "session_info_update")
        assert info.title == "Resumed: stored-1"

    @pytest.mark.anyio
    async def test_resume_busy_session_is_refused(self, registry: SessionRegistry, autohand_home: Path) -> None:
        write_index(autohand_home, [{"id": "stored", "projectPath": "/work"}])
        session = await registry.resume("stored", "/work")
        session.run = ActiveRun()
        with pytest.raises(SessionBusy):
            await registry.resume("stored", "/work")
        assert registry.get("stored") is session

    @pytest.mark.anyio
    async def test_resume_replaces_idle_session(self, registry: SessionRegistry, autohand_home: Path) -> None:
        write_index(autohand_home, [{"id": "stored", "projectPath": "/work"}])
        first = await registry.resume("stored", "/work")
        second = await registry.resume("stored", "/work")
        assert first is not second
        assert registry.get("stored") is second


class TestLoad:
    @pytest.mark.anyio
    async def test_load_replays_conversation(
        self, registry: SessionRegistry, client: FakeClient, autohand_home: Path
    ) -> None:
        path = write_conversation(
            autohand_home,
            "saved-5678",
            [
                {"role": "user", "content": "What is 2+2?"},
                "not json",
                {"role": "assistant", "content": "", "toolCalls": [{"id": "c", "tool": "read_file"}]},
                {"role": "tool", "tool_call_id": "c", "content": "ignored"},
                {"role": "assistant", "content": "4"},
            ],
        )

        session = await registry.load("saved-5678", "/work")
        await settle()

        assert client.kinds(session.id) == [
            "user_message_chunk",
            "agent_message_chunk",
            "agent_message_chunk",
            "available_commands_update",
        ]
        user, answer, marker = client.for_session(session.id)[:3]
        assert user.content.text == "What is 2+2?"
        assert answer.content.text == "4"
        assert marker.content.text == "\n--- Resumed session saved-56 ---\n\n"
        assert [(turn.role, turn.content) for turn in session.history] == [
            ("user", "What is 2+2?"),
            ("assistant", "4"),
        ]
        assert session.cursor.path == path
        assert session.title == "Loaded: saved-56"

    @pytest.mark.anyio
    async def test_load_without_log(self, registry: SessionRegistry, client: FakeClient) -> None:
        session = await registry.load("fresh-id", "/work")
        await settle()
        assert client.text(session.id) == "Session fresh-id loaded.\n"
        assert session.cursor.path is None


class TestListSessions:
    @pytest.mark.anyio
    async def test_newest_first_and_filtered(self, registry: SessionRegistry, autohand_home: Path) -> None:
        write_index(
            autohand_home,
            [
                {"id": "older-aaaa", "projectPath": "/work", "createdAt": "2026-01-01T00:00:00Z"},
                {"id": "newer-bbbb", "projectPath": "/work", "createdAt": "2026-02-01T00:00:00Z"},
                {"id": "other-cccc", "projectPath": "/else", "createdAt": "2026-03-01T00:00:00Z"},
            ],
        )
        everything = await registry.list_sessions()
        assert [info.session_id for info in everything] == ["other-cccc", "newer-bbbb", "older-aaaa"]

        filtered = await registry.list_sessions("/work")
        assert [info.session_id for info in filtered] == ["newer-bbbb", "older-aaaa"]
        assert filtered[0].title == "Session newer-bb"
        assert filtered[0].cwd == "/work"
        assert filtered[0].updated_at == "2026-02-01T00:00:00Z"


class TestSettings:
    @pytest.mark.anyio
    async def test_set_mode_emits_update(self, registry: SessionRegistry, client: FakeClient) -> None:
        session = registry.create("/work")
        registry.set_mode(session.id, "ask")
        await settle()
        assert session.mode_id == "ask"
        (update,) = client.of_kind(session.id, "current_mode_update")
        assert update.current_mode_id == "ask"

    @pytest.mark.anyio
    async def test_set_model_is_silent(self, registry: SessionRegistry, client: FakeClient) -> None:
        session = registry.create("/work")
        registry.set_model(session.id, "big-model")
        await settle()
        assert session.model_id == "big-model"
        assert client.kinds(session.id) == ["available_commands_update"]

    @pytest.mark.anyio
    async def test_set_config_option(self, registry: SessionRegistry, client: FakeClient) -> None:
        session = registry.create("/work")
        config_options = registry.set_config_option(session.id, "permission_mode", "external")
        assert session.config.permission_mode == "external"
        assert {option.root.id: option.root.current_value for option in config_options}["permission_mode"] == "external"
        await settle()
        (update,) = client.of_kind(session.id, "config_option_update")
        assert len(update.config_options) == 4

    @pytest.mark.anyio
    async def test_unknown_config_option(self, registry: SessionRegistry) -> None:
        session = registry.create("/work")
        with pytest.raises(InvalidArgument):
            registry.set_config_option(session.id, "volume", "11")

    @pytest.mark.anyio
    async def test_unknown_session_for_settings(self, registry: SessionRegistry) -> None:
        with pytest.raises(UnknownSession):
            registry.set_mode("nope", "ask")


class TestSubmitAndDiscard:
    @pytest.mark.anyio
    async def test_submit_runs_through_executor(self, client: FakeClient) -> None:
        executor = FakeExecutor()
        registry = SessionRegistry(executor, client)
        session = registry.create("/work")
        assert await registry.submit(session.id, ["hello"]) == "end_turn"
        assert executor.calls == [(session.id, ["hello"])]
        await registry.close()
        assert len(registry) == 0
