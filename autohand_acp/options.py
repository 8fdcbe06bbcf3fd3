"""Advertised modes, models and commands, and per-session config options."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from acp.schema import (
    AvailableCommand,
    ModelInfo,
    SessionConfigOption,
    SessionConfigOptionSelect,
    SessionConfigSelectOption,
    SessionMode,
)
from pydantic import ValidationError

from autohand_acp.errors import InvalidArgument
from autohand_acp.settings import settings

logger = structlog.get_logger(__name__)

DEFAULT_PERMISSION_MODE = "auto"

DEFAULT_MODES = (
    ("default", "Default", "Autohand default behavior"),
    ("ask", "Ask", "Answer without code changes"),
    ("code", "Code", "Prefer code changes"),
)

DEFAULT_COMMANDS = (
    ("help", "Show available commands"),
    ("new", "Start a new conversation"),
    ("model", "Select or change the model"),
    ("mode", "Select or change the mode"),
    ("resume", "Resume a previous session"),
    ("threads", "List previous sessions to resume"),
    ("sessions", "List recent sessions"),
    ("session", "Show current session info"),
    ("status", "Show Autohand status"),
    ("undo", "Undo the last change"),
    ("init", "Create an AGENTS.md for this project"),
    ("memory", "Manage saved memories"),
    ("skills", "List available skills"),
    ("export", "Export conversation"),
    ("permissions", "Manage tool permissions"),
    ("feedback", "Send feedback to Autohand"),
    ("agents", "List available agents"),
)

PERMISSION_MODE_CHOICES = (
    ("external", "External", "Forward to the editor for approval"),
    ("auto", "Auto-approve", "Automatically approve all actions"),
    ("restricted", "Restricted", "Deny dangerous operations"),
    ("ask", "Ask", "Interactive prompts (may hang)"),
)

# config id -> (name, description, disabled label, enabled label)
TOGGLE_OPTIONS = {
    "auto_commit": (
        "Auto-commit",
        "Automatically commit changes",
        "Manual commits only",
        "Auto-commit after changes",
    ),
    "dry_run": (
        "Dry Run",
        "Preview changes without writing",
        "Apply changes normally",
        "Preview only, no writes",
    ),
    "include_history": (
        "Include History",
        "Include conversation history in prompts",
        "Start fresh each prompt",
        "Carry context forward",
    ),
}

ENABLED = "enabled"
DISABLED = "disabled"


def _title_case(value: str) -> str:
    return " ".join(part.capitalize() for part in value.replace("-", " ").replace("_", " ").split())


def build_modes() -> list[SessionMode]:
    raw = settings.available_modes()
    if raw:
        modes: list[SessionMode] = []
        for item in raw:
            mode_id = str(item.get("id") or "").strip()
            if not mode_id:
                continue
            modes.append(
                SessionMode(
                    id=mode_id,
                    name=str(item.get("name") or _title_case(mode_id)),
                    description=item.get("description"),
                )
            )
        if modes:
            return modes
    return [SessionMode(id=mode_id, name=name, description=desc) for mode_id, name, desc in DEFAULT_MODES]


def default_mode(modes: list[SessionMode]) -> str:
    wanted = settings.default_mode()
    if wanted and any(mode.id == wanted for mode in modes):
        return wanted
    return modes[0].id if modes else "default"


def build_models() -> list[ModelInfo]:
    models: list[ModelInfo] = []
    for item in settings.available_models():
        try:
            models.append(ModelInfo.model_validate(item))
        except ValidationError:
            logger.warning("Ignoring invalid model entry", entry=item)
    return models


def default_model(models: list[ModelInfo]) -> str:
    wanted = settings.model()
    if wanted and any(model.model_id == wanted for model in models):
        return wanted
    return models[0].model_id if models else ""


def build_commands() -> list[AvailableCommand]:
    raw = settings.available_commands()
    if raw:
        commands: list[AvailableCommand] = []
        for item in raw:
            try:
                commands.append(AvailableCommand.model_validate(item))
            except ValidationError:
                logger.warning("Ignoring invalid command entry", entry=item)
        if commands:
            return commands
    return [AvailableCommand(name=name, description=desc) for name, desc in DEFAULT_COMMANDS]


@dataclass
class SessionConfig:
    """Per-session launch options the client can change from its config UI."""

    permission_mode: str = DEFAULT_PERMISSION_MODE
    auto_commit: bool = False
    dry_run: bool = False
    include_history: bool = False

    @classmethod
    def from_settings(cls) -> SessionConfig:
        return cls(
            permission_mode=settings.permission_mode() or DEFAULT_PERMISSION_MODE,
            auto_commit=settings.auto_commit(),
            dry_run=settings.dry_run(),
            include_history=settings.include_history(),
        )

    def options(self) -> list[SessionConfigOption]:
        options = [
            SessionConfigOption(
                root=SessionConfigOptionSelect(
                    id="permission_mode",
                    name="Permission Mode",
                    type="select",
                    description="How to handle tool permission requests",
                    current_value=self.permission_mode,
                    options=[
                        SessionConfigSelectOption(value=value, name=name, description=desc)
                        for value, name, desc in PERMISSION_MODE_CHOICES
                    ],
                )
            )
        ]
        for config_id, (name, description, off_label, on_label) in TOGGLE_OPTIONS.items():
            options.append(
                SessionConfigOption(
                    root=SessionConfigOptionSelect(
                        id=config_id,
                        name=name,
                        type="select",
                        description=description,
                        current_value=ENABLED if getattr(self, config_id) else DISABLED,
                        options=[
                            SessionConfigSelectOption(value=DISABLED, name="Disabled", description=off_label),
                            SessionConfigSelectOption(value=ENABLED, name="Enabled", description=on_label),
                        ],
                    )
                )
            )
        return options

    def apply(self, config_id: str, value: str) -> None:
        """Set one option; raises InvalidArgument for unknown ids or values."""
        if config_id == "permission_mode":
            allowed = {choice[0] for choice in PERMISSION_MODE_CHOICES}
            if value not in allowed:
                raise InvalidArgument("Unknown config value.", configId=config_id, value=value)
            self.permission_mode = value
            return
        if config_id in TOGGLE_OPTIONS:
            if value not in (ENABLED, DISABLED):
                raise InvalidArgument("Unknown config value.", configId=config_id, value=value)
            setattr(self, config_id, value == ENABLED)
            return
        raise InvalidArgument("Unknown config option.", configId=config_id)
