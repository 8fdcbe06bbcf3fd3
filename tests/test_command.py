"""Tests for building agent command lines."""

from __future__ import annotations

import pytest

from autohand_acp.command import LaunchConfig, build_command, build_resume_command
from conftest import make_session


def flags(mode: str, callback: str | None = None) -> list[str]:
    spec = build_command(
        LaunchConfig(permission_mode=mode),
        instruction="do it",
        cwd="/work",
        permission_callback_url=callback,
    )
    return [arg for arg in spec.args if arg in ("--yes", "--restricted", "--unrestricted")]


class TestBuildCommand:
    def test_base_arguments_and_environment(self) -> None:
        config = LaunchConfig(command="autohand", config_path="/cfg.json", home="/home/me/.autohand")
        spec = build_command(config, instruction="fix the bug", cwd="/work")
        assert spec.argv[:7] == ["autohand", "--prompt", "fix the bug", "--path", "/work", "--config", "/cfg.json"]
        assert spec.cwd == "/work"
        assert spec.env["AUTOHAND_HOME"] == "/home/me/.autohand"
        assert spec.env["AUTOHAND_NON_INTERACTIVE"] == "1"
        assert spec.env["NO_COLOR"] == "1"
        assert spec.env["TERM"] == "dumb"
        assert spec.env["AUTOHAND_SKIP_GIT_INIT"] == "1"
        assert spec.env["AUTOHAND_STREAM_TOOL_OUTPUT"] == "1"
        assert "AUTOHAND_PERMISSION_CALLBACK_URL" not in spec.env

    def test_optional_flags(self) -> None:
        config = LaunchConfig(
            model="gpt-x",
            temperature="0.2",
            dry_run=True,
            auto_commit=True,
            extra_args=("--verbose", "--max-steps", "3"),
        )
        args = build_command(config, instruction="go", cwd="/work").args
        assert args[args.index("--model") + 1] == "gpt-x"
        assert args[args.index("--temperature") + 1] == "0.2"
        assert "--dry-run" in args
        assert "--auto-commit" in args
        assert args[-3:] == ["--verbose", "--max-steps", "3"]

    @pytest.mark.parametrize(
        ("mode", "expected"),
        [
            ("auto", ["--yes"]),
            ("yes", ["--yes"]),
            ("restricted", ["--restricted"]),
            ("unrestricted", ["--unrestricted"]),
            ("ask", []),
        ],
    )
    def test_permission_flags(self, mode: str, expected: list[str]) -> None:
        assert flags(mode) == expected

    def test_external_mode_uses_callback(self) -> None:
        url = "http://127.0.0.1:5555/permission"
        spec = build_command(
            LaunchConfig(permission_mode="external"),
            instruction="go",
            cwd="/work",
            permission_callback_url=url,
        )
        assert spec.env["AUTOHAND_PERMISSION_CALLBACK_URL"] == url
        assert flags("external", url) == []

    def test_external_mode_without_callback_is_restricted(self) -> None:
        assert flags("external") == ["--restricted"]

    def test_resume_command(self) -> None:
        config = LaunchConfig(command="autohand", config_path="/cfg.json", home="/h", model="m1")
        spec = build_resume_command(config, session_id="abc123", cwd="/work")
        assert spec.argv == ["autohand", "resume", "abc123", "--config", "/cfg.json", "--path", "/work", "--model", "m1"]
        assert spec.env["AUTOHAND_HOME"] == "/h"


class TestLaunchConfig:
    def test_snapshot_from_settings_and_session(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTOHAND_CMD", "/opt/autohand")
        monkeypatch.setenv("AUTOHAND_TEMPERATURE", "0.7")
        monkeypatch.setenv("AUTOHAND_EXTRA_ARGS", "--flag 'two words'")
        session = make_session()
        session.model_id = "picked"
        session.config.permission_mode = "restricted"
        session.config.dry_run = True

        config = LaunchConfig.for_session(session)
        assert config.command == "/opt/autohand"
        assert config.temperature == "0.7"
        assert config.extra_args == ("--flag", "two words")
        assert config.model == "picked"
        assert config.permission_mode == "restricted"
        assert config.dry_run is True
        assert config.home == str(session.home)

    def test_session_changes_do_not_leak_into_other_sessions(self) -> None:
        first = make_session(session_id="a")
        second = make_session(session_id="b")
        first.config.auto_commit = True
        assert LaunchConfig.for_session(first).auto_commit is True
        assert LaunchConfig.for_session(second).auto_commit is False
