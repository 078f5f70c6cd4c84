"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import enum
from typing import Optional

from lookout.core.errors import UnknownUserStateError


@dataclass(frozen=True)
class Author:
    """Display information about the author of a message."""

    id: int
    name: str
    avatar_url: Optional[str] = None
    bot: bool = False


@dataclass(frozen=True)
class MessageContext:
    """Minimal message context used by the core processing pipeline."""

    message_id: int
    channel_id: int
    guild_id: Optional[int]
    author: Author
    timestamp: datetime
    content: str
    permalink: str


class ChannelKind(enum.Enum):
    TEXT = "text"
    VOICE = "voice"
    CATEGORY = "category"
    OTHER = "other"


@dataclass(frozen=True)
class Channel:
    """Channel metadata used by channel resolution."""

    id: int
    name: str
    guild_id: int
    kind: ChannelKind = ChannelKind.TEXT


@dataclass(frozen=True)
class UserInfo:
    id: int
    name: str


class KeywordKind(enum.Enum):
    GUILD = "guild"
    CHANNEL = "channel"


@dataclass(frozen=True)
class Keyword:
    """A keyword subscription, scoped to a whole guild or to one channel."""

    keyword: str
    user_id: int
    kind: KeywordKind
    scope_id: int


@dataclass(frozen=True)
class Candidate:
    """A subscriber who should hear about a message, and why."""

    user_id: int
    keyword: str


@dataclass(frozen=True)
class Notification:
    """Persisted representation of one delivered notification message."""

    # The message that caused the notification to be sent.
    original_message: int
    # The message sent to the subscriber.
    notification_message: int
    keyword: str
    user_id: int


class UserStateKind(enum.Enum):
    CANNOT_DM = 0

    @classmethod
    def from_code(cls, user_id: int, code: object) -> "UserStateKind":
        """Decode a persisted state code, rejecting anything unknown."""

        for kind in cls:
            if kind.value == code:
                return kind
        raise UnknownUserStateError(user_id, code)


@dataclass(frozen=True)
class UserState:
    user_id: int
    state: UserStateKind
