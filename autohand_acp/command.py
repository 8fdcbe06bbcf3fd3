"""Command lines and environments for launching the Autohand CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from autohand_acp.settings import settings

if TYPE_CHECKING:
    from autohand_acp.session import Session

# Keeps the CLI from printing banners, colours or interactive prompts.
_QUIET_ENV = {
    "AUTOHAND_NO_BANNER": "1",
    "AUTOHAND_NON_INTERACTIVE": "1",
    "CI": "1",
    "FORCE_COLOR": "0",
    "NO_COLOR": "1",
    "TERM": "dumb",
}


@dataclass(frozen=True)
class LaunchConfig:
    """Everything needed to build a command line, resolved at prompt time."""

    command: str = "autohand"
    config_path: str = ""
    home: str = ""
    model: str = ""
    temperature: str = ""
    permission_mode: str = "auto"
    dry_run: bool = False
    auto_commit: bool = False
    extra_args: tuple[str, ...] = ()
    stream_tool_output: str = "1"

    @classmethod
    def for_session(cls, session: Session) -> LaunchConfig:
        return cls(
            command=settings.command(),
            config_path=settings.config_path(),
            home=str(session.home),
            model=session.model_id,
            temperature=settings.temperature(),
            permission_mode=session.config.permission_mode.lower(),
            dry_run=session.config.dry_run,
            auto_commit=session.config.auto_commit,
            extra_args=tuple(settings.extra_args()),
            stream_tool_output=settings.stream_tool_output(),
        )


@dataclass
class LaunchSpec:
    command: str
    args: list[str]
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


def _permission_flags(mode: str, callback_url: str | None) -> list[str]:
    if mode == "external":
        # Without a reachable callback nothing can approve, so deny dangerous actions.
        return [] if callback_url else ["--restricted"]
    if mode in ("auto", "yes"):
        return ["--yes"]
    if mode == "unrestricted":
        return ["--unrestricted"]
    if mode == "restricted":
        return ["--restricted"]
    # "ask" passes nothing and may block on interactive prompts.
    return []


def build_command(
    config: LaunchConfig,
    *,
    instruction: str,
    cwd: str,
    permission_callback_url: str | None = None,
) -> LaunchSpec:
    """Build the one-shot prompt invocation."""
    args = ["--prompt", instruction, "--path", cwd, "--config", config.config_path]
    if config.model:
        args += ["--model", config.model]
    if config.temperature:
        args += ["--temperature", config.temperature]
    args += _permission_flags(config.permission_mode, permission_callback_url)
    if config.dry_run:
        args.append("--dry-run")
    if config.auto_commit:
        args.append("--auto-commit")
    args += list(config.extra_args)

    env = {
        **os.environ,
        **_QUIET_ENV,
        "AUTOHAND_SKIP_GIT_INIT": "1",
        "AUTOHAND_STREAM_TOOL_OUTPUT": config.stream_tool_output,
        "AUTOHAND_HOME": config.home,
    }
    if permission_callback_url:
        env["AUTOHAND_PERMISSION_CALLBACK_URL"] = permission_callback_url
    return LaunchSpec(command=config.command, args=args, env=env, cwd=cwd)


def build_resume_command(config: LaunchConfig, *, session_id: str, cwd: str) -> LaunchSpec:
    """Build ``autohand resume <id>`` for continuing a stored session."""
    args = ["resume", session_id, "--config", config.config_path, "--path", cwd]
    if config.model:
        args += ["--model", config.model]
    env = {**os.environ, **_QUIET_ENV, "AUTOHAND_HOME": config.home}
    return LaunchSpec(command=config.command, args=args, env=env, cwd=cwd)
