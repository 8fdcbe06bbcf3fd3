"""Centralized environment configuration for the Autohand ACP bridge.

All environment variables are read through this module. Variables that the
Autohand CLI itself understands keep their ``AUTOHAND_`` names; settings that
only concern the bridge use the ``AUTOHAND_ACP_`` prefix.

Usage:
    from autohand_acp.settings import settings

    cmd = settings.command()
    if settings.include_history():
        ...
"""

from __future__ import annotations

import json
import os
import shlex

import structlog

logger = structlog.get_logger(__name__)


def _get(name: str, default: str = "") -> str:
    """Get an environment variable value."""
    return os.environ.get(name, "").strip() or default


def _get_bool(name: str, default: bool = False) -> bool:
    """Get a boolean environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    return value.lower() in ("1", "true", "yes")


def _get_int(name: str, default: int = 0) -> int:
    """Get an integer environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_list(name: str) -> list[str]:
    """Get a comma-separated environment variable as a list of non-empty items."""
    return [item.strip() for item in _get(name).split(",") if item.strip()]


def _get_json_list(name: str) -> list[dict] | None:
    """Get a JSON array of objects, or None when unset or invalid."""
    value = _get(name)
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Ignoring invalid JSON setting", name=name)
        return None
    if not isinstance(parsed, list) or not parsed:
        return None
    return [item for item in parsed if isinstance(item, dict)] or None


class Settings:
    """Centralized settings for the Autohand ACP bridge."""

    # -------------------------------------------------------------------------
    # Autohand CLI
    # -------------------------------------------------------------------------

    @staticmethod
    def command() -> str:
        """Executable used to launch the agent.

        Env: AUTOHAND_CMD (default: autohand)
        """
        return _get("AUTOHAND_CMD", default="autohand")

    @staticmethod
    def config_path() -> str:
        """Path of the Autohand config file passed with ``--config``.

        Env: AUTOHAND_CONFIG (default: ~/.autohand/config.json)
        """
        value = _get("AUTOHAND_CONFIG")
        if value:
            return os.path.expanduser(value)
        return os.path.join(os.path.expanduser("~"), ".autohand", "config.json")

    @staticmethod
    def home() -> str:
        """Autohand data directory holding ``sessions/index.json``.

        Env: AUTOHAND_HOME (default: ~/.autohand)
        """
        value = _get("AUTOHAND_HOME")
        if value:
            return os.path.abspath(os.path.expanduser(value))
        return os.path.join(os.path.expanduser("~"), ".autohand")

    @staticmethod
    def model() -> str:
        """Default model id.

        Env: AUTOHAND_MODEL
        """
        return _get("AUTOHAND_MODEL")

    @staticmethod
    def temperature() -> str:
        """Sampling temperature forwarded with ``--temperature``.

        Env: AUTOHAND_TEMPERATURE
        """
        return _get("AUTOHAND_TEMPERATURE")

    @staticmethod
    def permission_mode() -> str:
        """Initial permission policy for new sessions.

        Env: AUTOHAND_PERMISSION_MODE (default: auto)

        Options:
            - external: forward approvals to the client through the permission bridge
            - auto / yes: approve everything (``--yes``)
            - restricted: deny dangerous operations (``--restricted``)
            - unrestricted: ``--unrestricted``
            - ask: no flag, the CLI may prompt interactively
        """
        return _get("AUTOHAND_PERMISSION_MODE", default="auto").lower()

    @staticmethod
    def dry_run() -> bool:
        """Env: AUTOHAND_DRY_RUN"""
        return _get_bool("AUTOHAND_DRY_RUN")

    @staticmethod
    def auto_commit() -> bool:
        """Env: AUTOHAND_AUTO_COMMIT"""
        return _get_bool("AUTOHAND_AUTO_COMMIT")

    @staticmethod
    def extra_args() -> list[str]:
        """Additional CLI arguments, split with shell quoting rules.

        Env: AUTOHAND_EXTRA_ARGS
        """
        value = _get("AUTOHAND_EXTRA_ARGS")
        if not value:
            return []
        try:
            return shlex.split(value)
        except ValueError:
            logger.warning("Ignoring unparseable AUTOHAND_EXTRA_ARGS", value=value)
            return []

    @staticmethod
    def stream_tool_output() -> str:
        """Env: AUTOHAND_STREAM_TOOL_OUTPUT (default: 1)"""
        return _get("AUTOHAND_STREAM_TOOL_OUTPUT", default="1")

    # -------------------------------------------------------------------------
    # Prompt building
    # -------------------------------------------------------------------------

    @staticmethod
    def include_history() -> bool:
        """Prepend prior turns to each instruction.

        Env: AUTOHAND_INCLUDE_HISTORY
        """
        return _get_bool("AUTOHAND_INCLUDE_HISTORY")

    @staticmethod
    def history_limit() -> int:
        """Env: AUTOHAND_HISTORY_LIMIT (default: 6)"""
        return max(0, _get_int("AUTOHAND_HISTORY_LIMIT", default=6))

    @staticmethod
    def max_history_chars() -> int:
        """Env: AUTOHAND_MAX_HISTORY_CHARS (default: 8000)"""
        return _get_int("AUTOHAND_MAX_HISTORY_CHARS", default=8000)

    # -------------------------------------------------------------------------
    # Advertised session state
    # -------------------------------------------------------------------------

    @staticmethod
    def available_modes() -> list[dict] | None:
        """Modes offered to the client.

        Env: AUTOHAND_AVAILABLE_MODES_JSON, then AUTOHAND_AVAILABLE_MODES
        (comma-separated ids). None selects the built-in modes.
        """
        parsed = _get_json_list("AUTOHAND_AVAILABLE_MODES_JSON")
        if parsed:
            return parsed
        ids = _get_list("AUTOHAND_AVAILABLE_MODES")
        if ids:
            return [{"id": mode_id} for mode_id in ids]
        return None

    @staticmethod
    def default_mode() -> str:
        """Env: AUTOHAND_DEFAULT_MODE"""
        return _get("AUTOHAND_DEFAULT_MODE")

    @staticmethod
    def available_models() -> list[dict]:
        """Models offered to the client.

        Env: AUTOHAND_AVAILABLE_MODELS_JSON, then AUTOHAND_AVAILABLE_MODELS
        (comma-separated ids), then AUTOHAND_MODEL alone.
        """
        parsed = _get_json_list("AUTOHAND_AVAILABLE_MODELS_JSON")
        if parsed:
            return parsed
        ids = _get_list("AUTOHAND_AVAILABLE_MODELS")
        if not ids and _get("AUTOHAND_MODEL"):
            ids = [_get("AUTOHAND_MODEL")]
        return [{"modelId": model_id, "name": model_id} for model_id in ids]

    @staticmethod
    def available_commands() -> list[dict] | None:
        """Env: AUTOHAND_AVAILABLE_COMMANDS_JSON"""
        return _get_json_list("AUTOHAND_AVAILABLE_COMMANDS_JSON")

    @staticmethod
    def supports_audio() -> bool:
        """Env: AUTOHAND_SUPPORTS_AUDIO"""
        return _get_bool("AUTOHAND_SUPPORTS_AUDIO")

    # -------------------------------------------------------------------------
    # Logging Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def log_level() -> str:
        """Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).

        Env: AUTOHAND_ACP_LOG_LEVEL (default: INFO)
        """
        return _get("AUTOHAND_ACP_LOG_LEVEL", default="INFO").upper()

    @staticmethod
    def log_format() -> str:
        """Log format: "console" for dev-friendly, "json" for structured.

        Env: AUTOHAND_ACP_LOG_FORMAT (default: console)
        """
        return _get("AUTOHAND_ACP_LOG_FORMAT", default="console").lower()

    @staticmethod
    def log_file() -> str:
        """Path to an optional log file. Empty means stderr only.

        Env: AUTOHAND_ACP_LOG_FILE
        """
        return _get("AUTOHAND_ACP_LOG_FILE")


settings = Settings()
