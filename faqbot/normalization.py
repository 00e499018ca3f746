"""Normalization of caller-supplied conversation history.

Raw history arrives in several shapes: a plain string, a list of content
fragments (``{"type": "input_text", "text": "hi"}``), or a single fragment
object. ``normalize_messages`` decodes all of them once, at the boundary, into
canonical ``Message`` values. Code downstream of it only ever sees flat text.
"""

import json
from collections.abc import Iterable, Mapping
from typing import Any

from .config import config
from .models import Message, Role

FRAGMENT_TEXT_FIELDS = ("text", "content", "message")

logger = config.get_logger(__name__)


def _read_field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def resolve_fragment(fragment: Any) -> str:
    """Resolve one content fragment to text.

    Prefers a ``text`` field, then ``content``, then ``message``; anything
    without those fields is stringified (mappings as JSON). Nested fields are
    resolved the same way, so ``{"content": {"text": "hi"}}`` yields ``"hi"``.

    Returns:
        The fragment text, stripped of surrounding whitespace.
    """
    if fragment is None:
        return ""
    if isinstance(fragment, str):
        return fragment.strip()
    for name in FRAGMENT_TEXT_FIELDS:
        value = _read_field(fragment, name)
        if value is not None:
            return resolve_content(value).strip()
    if isinstance(fragment, Mapping):
        return json.dumps(fragment, default=str, ensure_ascii=False)
    return str(fragment).strip()


def resolve_content(content: Any) -> str:
    """Resolve any supported content shape to a single flat string.

    Returns:
        Flat text. Plain strings are returned unchanged; fragments are
        stripped, joined with single spaces, and empty ones dropped.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace").strip()
    if isinstance(content, Mapping) or _looks_like_fragment(content):
        return resolve_fragment(content)
    if isinstance(content, Iterable):
        parts = [resolve_fragment(fragment) for fragment in content]
        return " ".join(part for part in parts if part)
    return str(content).strip()


def _looks_like_fragment(value: Any) -> bool:
    return any(hasattr(value, name) for name in FRAGMENT_TEXT_FIELDS)


def coerce_role(role: Any) -> Role:
    """Coerce a raw role into one of system, user or assistant.

    Returns:
        The matching Role; unrecognised values become ``Role.USER``.
    """
    if isinstance(role, Role):
        return role
    value = str(getattr(role, "value", role) or "").strip().lower()
    try:
        return Role(value)
    except ValueError:
        return Role.USER


def to_message(entry: Any) -> Message | None:
    """Decode one raw history entry.

    Returns:
        A canonical Message, or None when the entry has no visible text.
    """
    if isinstance(entry, Message) and isinstance(entry.content, str):
        return entry if entry.content.strip() else None
    if isinstance(entry, str):
        role, content = Role.USER, entry
    else:
        role = coerce_role(_read_field(entry, "role"))
        content = _read_field(entry, "content")
    text = resolve_content(content)
    if not text.strip():
        return None
    return Message(role=role, content=text)


def normalize_messages(
    raw_messages: Iterable[Any] | None,
    window: int | None = None,
) -> list[Message]:
    """Turn raw history into canonical messages.

    Only the ``window`` most recent raw entries are considered; older history
    is dropped without summarization. Entries whose content resolves to an
    empty string are removed. Applying this to its own output is a no-op.

    Args:
        raw_messages: Caller-supplied history, oldest first.
        window: Number of recent entries to keep. Defaults to
            ``config.HISTORY_WINDOW``.

    Returns:
        Ordered list of canonical messages.
    """
    if raw_messages is None:
        return []
    if window is None:
        window = config.HISTORY_WINDOW

    entries = list(raw_messages)
    recent = entries[-window:] if window > 0 else []
    messages: list[Message] = []
    for entry in recent:
        message = to_message(entry)
        if message is None:
            logger.debug("Dropping history entry without text content")
            continue
        messages.append(message)
    return messages


def ensure_flat(messages: Iterable[Message]) -> list[Message]:
    """Re-verify every message right before it is sent to a provider.

    Messages built outside ``normalize_messages`` may still carry non-string
    content; such content is coerced instead of being forwarded raw.

    Returns:
        Messages whose content is guaranteed to be a non-empty string.
    """
    verified: list[Message] = []
    for message in messages:
        content: Any = message.content
        if not isinstance(content, str):
            logger.warning(
                "Coercing non-string %s content of type %s before dispatch",
                message.role.value,
                type(content).__name__,
            )
            content = resolve_content(content)
        if not content.strip():
            continue
        verified.append(Message(role=coerce_role(message.role), content=content))
    return verified
