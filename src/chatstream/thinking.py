"""Reasoning segments in assistant output and thinking directives in prompts.

:func:`split_think` separates a leading ``<think>...</think>`` span from
the answer body.  It is a pure function of the whole current content and
is meant to be called again on every render while the content grows.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from chatstream.message import Message, MessageRole

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


@dataclass(frozen=True)
class ThinkParseResult:
    """A message split into its reasoning and its body.

    ``is_complete`` is false while the closing tag has not arrived yet;
    in that case everything after the opening tag is reasoning and the
    body is empty.
    """

    think_content: str
    rest_content: str
    is_complete: bool


def split_think(content: str) -> ThinkParseResult | None:
    """Split *content* into reasoning and body.

    Returns ``None`` unless the first non-whitespace text of *content* is
    the opening tag.  A tag further into the message is ordinary text.
    """
    if not content or not content.lstrip().startswith(THINK_OPEN):
        return None

    start = content.index(THINK_OPEN) + len(THINK_OPEN)
    end = content.find(THINK_CLOSE, start)
    if end == -1:
        return ThinkParseResult(
            think_content=content[start:].strip(),
            rest_content="",
            is_complete=False,
        )
    return ThinkParseResult(
        think_content=content[start:end].strip(),
        rest_content=content[end + len(THINK_CLOSE):].strip(),
        is_complete=True,
    )


def render_parts(content: str) -> tuple[str | None, str]:
    """Return ``(reasoning, body)`` for display.

    ``reasoning`` is ``None`` for a message without a think segment, in
    which case the body is *content* unchanged.
    """
    parsed = split_think(content)
    if parsed is None:
        return None, content
    return parsed.think_content, parsed.rest_content


# ---------------------------------------------------------------------------
# Thinking directives
# ---------------------------------------------------------------------------

_DIRECTIVE_PATTERN = re.compile(r"/(?:no[_-]?think|think)\b", re.IGNORECASE)

THINK_TOKEN = "/think"
NO_THINK_TOKEN = "/no_think"


def extract_thinking_directive(content: str) -> tuple[str, bool | None]:
    """Remove ``/think`` and ``/no_think`` directives from *content*.

    Returns the trimmed remaining text and the directive, ``True`` for
    think, ``False`` for no-think, or ``None`` if there was none.  The
    last directive in the text wins.
    """
    if not content:
        return content, None

    directive = None

    def _strip(match: re.Match) -> str:
        nonlocal directive
        directive = "no" not in match.group(0).lower()
        return ""

    sanitized = _DIRECTIVE_PATTERN.sub(_strip, content)
    return sanitized.strip(), directive


def extract_thinking_directive_from_messages(
    messages: list[Message],
) -> tuple[list[Message], bool | None]:
    """Strip directives from every message; the last one found wins."""
    directive = None
    cleaned = []
    for message in messages:
        content, found = extract_thinking_directive(message.content)
        if found is not None:
            directive = found
        cleaned.append(message.model_copy(update={"content": content}))
    return cleaned, directive


def apply_thinking_directive(
    messages: list[Message], directive: bool | None,
) -> list[Message]:
    """Append the canonical directive token to the last user or system message."""
    if directive is None or not messages:
        return messages

    for idx in range(len(messages) - 1, -1, -1):
        if messages[idx].role in (MessageRole.USER, MessageRole.SYSTEM):
            break
    else:
        return messages

    token = THINK_TOKEN if directive else NO_THINK_TOKEN
    content = messages[idx].content.strip()
    updated = list(messages)
    updated[idx] = messages[idx].model_copy(
        update={"content": f"{content}\n{token}" if content else token},
    )
    return updated
