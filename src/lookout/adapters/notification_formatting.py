"""Shared notification formatting helpers.

Keeping formatting here prevents drift between the first delivery and later
refreshes of the same notification.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import re
from typing import Optional

from lookout.core.config import NotificationConfig
from lookout.core.matcher import keyword_pattern
from lookout.core.models import MessageContext

# Discord limits for embed author names and descriptions.
MAX_TITLE_CHARS = 256
MAX_DESCRIPTION_CHARS = 4096

_MARKDOWN_CHARS = re.compile(r"([\\*_~`|>])")


@dataclass(frozen=True)
class NotificationPayload:
    """Transport-neutral content of one notification."""

    title: str
    url: str
    description: str
    timestamp: datetime
    footer_text: str
    footer_icon_url: Optional[str]
    color: int


def escape_markdown(value: str) -> str:
    return _MARKDOWN_CHARS.sub(r"\\\1", value)


def clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def highlight_keyword(content: str, keyword: str, limit: Optional[int] = None) -> str:
    """Escape the content and bold every occurrence of the keyword.

    With a limit, the result is cut between escaped characters and whole
    highlighted matches, so no escape or bold markup is ever split.
    """

    pieces: list[str] = []
    last = 0
    matches = keyword_pattern(keyword).finditer(content) if keyword.strip() else ()
    for match in matches:
        pieces.extend(escape_markdown(char) for char in content[last : match.start()])
        pieces.append(f"**{escape_markdown(match.group(0))}**")
        last = match.end()
    pieces.extend(escape_markdown(char) for char in content[last:])

    highlighted = "".join(pieces)
    if limit is None or len(highlighted) <= limit:
        return highlighted

    kept: list[str] = []
    size = 0
    for piece in pieces:
        if size + len(piece) > limit - 1:
            break
        kept.append(piece)
        size += len(piece)
    return "".join(kept).rstrip() + "…"


def format_title(keyword: str, channel_name: str, guild_name: str) -> str:
    return clip(f'Keyword "{keyword}" seen in #{channel_name} ({guild_name})', MAX_TITLE_CHARS)


def build_payload(
    context: MessageContext,
    keyword: str,
    channel_name: str,
    guild_name: str,
    config: NotificationConfig,
) -> NotificationPayload:
    """Compose the notification for a keyword seen in a message."""

    # Escaping can double the snippet, so the description is clipped again.
    snippet = clip(context.content.strip(), min(config.snippet_chars, MAX_DESCRIPTION_CHARS))
    return NotificationPayload(
        title=format_title(keyword, channel_name, guild_name),
        url=context.permalink,
        description=highlight_keyword(snippet, keyword, MAX_DESCRIPTION_CHARS),
        timestamp=context.timestamp,
        footer_text=context.author.name,
        footer_icon_url=context.author.avatar_url,
        color=config.embed_color,
    )


def format_error_report(channel_id: int, user_id: int, error: BaseException) -> str:
    return f"Error in {channel_id} by {user_id}: {error}"
