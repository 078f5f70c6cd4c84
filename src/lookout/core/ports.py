"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, transport, and reporting
adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Optional, Protocol

from lookout.core.models import (
    Keyword,
    MessageContext,
    Notification,
    UserInfo,
    UserState,
)


class KeywordStorePort(Protocol):
    """Keyword subscription lookups required by the matcher."""

    def keywords_for_message(self, guild_id: int, channel_id: int) -> list[Keyword]:
        ...

    def muted_users(self, channel_id: int) -> set[int]:
        ...

    def ignored_phrases(self, guild_id: int) -> dict[int, list[str]]:
        ...


class NotificationLedgerPort(Protocol):
    """Storage of delivered notifications, used for retraction."""

    def insert(self, notification: Notification) -> None:
        ...

    def notifications_of_message(self, message_id: int) -> list[Notification]:
        ...

    def delete_notification(self, notification_message: int) -> bool:
        ...

    def delete_notifications_of_message(self, message_id: int) -> int:
        ...


class UserStatePort(Protocol):
    """Per-user delivery flags."""

    def user_state(self, user_id: int) -> Optional[UserState]:
        ...

    def set(self, state: UserState) -> None:
        ...

    def clear(self, user_id: int) -> None:
        ...


class PermissionsPort(Protocol):
    """Read-only permission queries against the transport's live state."""

    @property
    def current_user_id(self) -> int:
        ...

    async def user_can_read_channel(self, channel_id: int, user_id: int) -> bool:
        ...


class UserDirectoryPort(Protocol):
    async def fetch_user(self, user_id: int) -> Optional[UserInfo]:
        ...


class NotifierPort(Protocol):
    """Notification delivery operations required by the core pipeline."""

    async def send(self, user_id: int, context: MessageContext, keyword: str) -> int:
        """Deliver a notification and return the id of the sent message."""
        ...

    async def refresh(self, notification: Notification, context: MessageContext) -> None:
        ...

    async def delete(self, notification: Notification) -> None:
        ...


class ErrorReporterPort(Protocol):
    async def report(self, channel_id: int, user_id: int, error: BaseException) -> None:
        ...
