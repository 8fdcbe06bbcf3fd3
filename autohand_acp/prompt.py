"""Turning protocol prompt blocks into the instruction text passed to the CLI."""

from __future__ import annotations

import os
import re
from collections.abc import Awaitable, Callable, Sequence
from typing import Any
from urllib.parse import unquote

import structlog
from acp.schema import EmbeddedResourceContentBlock, TextResourceContents

from autohand_acp.models import HistoryTurn
from autohand_acp.text import truncate_text

logger = structlog.get_logger(__name__)

TITLE_MAX_CHARS = 50
_TITLE_TAG_RE = re.compile(r"\[(?:resource|image)[^\]]*\]", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


def _field(block: Any, *names: str) -> Any:
    """Read a field from a schema model or a plain dict, trying each name."""
    for name in names:
        if isinstance(block, dict):
            if block.get(name) is not None:
                return block[name]
        else:
            value = getattr(block, name, None)
            if value is not None:
                return value
    return None


def extract_path_from_uri(uri: str) -> str | None:
    if uri.startswith("file://"):
        return unquote(uri[len("file://") :])
    if os.path.isabs(uri):
        return uri
    return None


async def resolve_prompt_blocks(
    blocks: Sequence[Any],
    *,
    cwd: str,
    read_file: Callable[[str], Awaitable[str | None]],
) -> list[Any]:
    """Inline the content of file resource links; unreadable links are kept as links."""
    resolved: list[Any] = []
    for block in blocks:
        if _field(block, "type") != "resource_link":
            resolved.append(block)
            continue
        uri = _field(block, "uri") or ""
        path = extract_path_from_uri(uri)
        if path is None:
            resolved.append(block)
            continue

        absolute = path if os.path.isabs(path) else os.path.abspath(os.path.join(cwd, path))
        content = await read_file(absolute)
        if content is None:
            logger.debug("Keeping unreadable resource link", uri=uri)
            resolved.append(block)
            continue

        resolved.append(
            EmbeddedResourceContentBlock(
                type="resource",
                resource=TextResourceContents(
                    uri=uri,
                    text=content,
                    mime_type=_field(block, "mime_type", "mimeType") or "text/plain",
                ),
            )
        )
    return resolved


def prompt_to_text(blocks: Sequence[Any]) -> str:
    parts: list[str] = []
    image_count = 0
    for block in blocks:
        kind = _field(block, "type")
        if kind == "text":
            parts.append(_field(block, "text") or "")
        elif kind == "resource_link":
            parts.append(f"[resource_link: {_field(block, 'uri')}] {_field(block, 'name') or ''}".strip())
        elif kind == "resource":
            resource = _field(block, "resource")
            text = _field(resource, "text")
            uri = _field(resource, "uri")
            if text is not None:
                header = f"[resource: {uri}]" if uri else "[resource]"
                parts.append(f"{header}\n{text}".strip())
            else:
                parts.append(f"[resource: {uri or 'unknown'}] (binary content omitted)")
        elif kind == "image":
            image_count += 1
            lines = [f"[Image {image_count}]", f"  Type: {_field(block, 'mime_type', 'mimeType') or 'image/png'}"]
            if _field(block, "uri"):
                lines.append(f"  URI: {_field(block, 'uri')}")
            data = _field(block, "data")
            if data:
                lines.append(f"  Size: ~{round(len(data) * 3 / 4 / 1024)}KB")
            parts.append("\n".join(lines))
        elif kind == "audio":
            parts.append(f"[audio: {_field(block, 'mime_type', 'mimeType') or 'unknown'}]")
        else:
            parts.append("[unsupported content]")
    return "\n".join(parts)


def generate_session_title(text: str) -> str:
    cleaned = _WHITESPACE_RE.sub(" ", _TITLE_TAG_RE.sub("", text)).strip()
    if not cleaned:
        return "New Session"
    if len(cleaned) <= TITLE_MAX_CHARS:
        return cleaned
    truncated = cleaned[:TITLE_MAX_CHARS]
    last_space = truncated.rfind(" ")
    if last_space > 20:
        return truncated[:last_space] + "..."
    return truncated + "..."


def build_instruction(
    user_text: str,
    *,
    mode_id: str | None,
    history: Sequence[HistoryTurn],
    include_history: bool,
    history_limit: int,
    max_chars: int,
) -> str:
    """Prefix the mode and, when enabled, replay recent turns before the request."""
    prefix = f"Mode: {mode_id}\n\n" if mode_id else ""
    request = f"{prefix}{user_text}".strip()
    if not include_history or not history:
        return request

    recent = list(history)[-history_limit:] if history_limit > 0 else []
    if not recent:
        return request
    context = "\n\n".join(
        f"{'User' if turn.role == 'user' else 'Assistant'}: {turn.content}" for turn in recent
    )
    combined = f"Conversation context:\n{context}\n\nCurrent request:\n{request}"
    return truncate_text(combined, max_chars)
