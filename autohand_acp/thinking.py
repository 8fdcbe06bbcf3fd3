"""Routing of live agent stdout into message text and thoughts.

The agent prints reasoning and answers on the same stream. Explicit
``<thinking>...</thinking>`` spans are always treated as thoughts; anything
else is handed to a ``ThinkingClassifier``. The default classifier is a
heuristic over the start of each chunk and will misfire on some output.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Literal, Protocol

THOUGHT: Literal["thought"] = "thought"
TEXT: Literal["text"] = "text"

DEFAULT_THINKING_PATTERNS = (
    r"^(?:thinking|let me think|i'm thinking|considering|analyzing)",
    r"^<thinking>",
    r"^<reasoning>",
    r"^\*thinking\*",
    r"^I need to ",
    r"^First, I'll ",
    r"^Let me analyze",
)

_OPEN_TAG = "<thinking>"
_CLOSE_TAG = "</thinking>"
_TAG_RE = re.compile(r"</?thinking>")


class ThinkingClassifier(Protocol):
    """Decides whether a chunk of stdout is reasoning rather than an answer."""

    def is_thinking(self, text: str) -> bool: ...


class PatternClassifier:
    """Case-insensitive regex match against the stripped chunk."""

    def __init__(self, patterns: Iterable[str] = DEFAULT_THINKING_PATTERNS) -> None:
        self._patterns = [re.compile(pattern, re.IGNORECASE) for pattern in patterns]

    def is_thinking(self, text: str) -> bool:
        stripped = text.strip()
        return any(pattern.search(stripped) for pattern in self._patterns)


class StdoutRouter:
    """Stateful splitter turning stdout chunks into ``(kind, text)`` pieces."""

    def __init__(self, classifier: ThinkingClassifier | None = None) -> None:
        self._classifier = classifier or PatternClassifier()
        self._in_block = False
        self._buffer = ""

    def feed(self, text: str) -> list[tuple[str, str]]:
        if not text:
            return []

        if _OPEN_TAG in text:
            self._in_block = True
            self._buffer = ""

        if self._in_block:
            self._buffer += text
            if _CLOSE_TAG in text:
                self._in_block = False
                return self._take_block()
            return []

        if self._classifier.is_thinking(text):
            return [(THOUGHT, text)]
        return [(TEXT, text)]

    def flush(self) -> list[tuple[str, str]]:
        """Emit an unterminated thinking block left over at process exit."""
        if not self._in_block:
            return []
        self._in_block = False
        return self._take_block()

    def _take_block(self) -> list[tuple[str, str]]:
        thought = _TAG_RE.sub("", self._buffer).strip()
        self._buffer = ""
        if not thought:
            return []
        return [(THOUGHT, thought)]
