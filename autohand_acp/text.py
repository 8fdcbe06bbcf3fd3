"""Small text helpers shared by the relay, the supervisor and prompt building."""

from __future__ import annotations

import re

# OSC must be tried before the two-byte escapes, whose range includes "]".
_ANSI_RE = re.compile(r"\x1B(?:\].*?(?:\x07|\x1B\\)|\[[0-?]*[ -/]*[@-~]|[@-Z\\-_])")


def strip_ansi(text: str) -> str:
    """Remove colour codes, cursor control and OSC sequences."""
    return _ANSI_RE.sub("", text)


def chunk_text(text: str, max_size: int) -> list[str]:
    if len(text) <= max_size:
        return [text]
    return [text[start : start + max_size] for start in range(0, len(text), max_size)]


def truncate_text(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}\n[truncated {len(text) - max_chars} chars]"


def normalize_prompt_text(text: str) -> str:
    return text.replace("\r\n", "\n").strip()
