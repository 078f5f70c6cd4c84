"""Exception hierarchy shared by the core and adapters."""

from __future__ import annotations


class LookoutError(Exception):
    """Base class for every error raised on purpose by lookout."""


class ResolutionError(LookoutError):
    """A channel, guild, or user known to exist could not be fetched.

    This points at an inconsistent cache or a transport failure rather than
    bad user input, which is reported through the resolution results instead.
    """


class DeliveryError(LookoutError):
    """Sending or editing a notification failed."""


class RecipientUnreachableError(DeliveryError):
    """The recipient does not accept direct messages from the bot."""


class StorageError(LookoutError):
    """A database operation failed; the write must not be assumed to exist."""


class UnknownUserStateError(StorageError):
    """A persisted recipient state code is not part of UserStateKind."""

    def __init__(self, user_id: int, code: object) -> None:
        super().__init__(f"Unknown user state {code!r} for user {user_id}")
        self.user_id = user_id
        self.code = code


class KeywordLimitError(LookoutError):
    """The user already has the maximum number of keywords."""

    def __init__(self, user_id: int, limit: int) -> None:
        super().__init__(f"User {user_id} already has {limit} keywords")
        self.user_id = user_id
        self.limit = limit
