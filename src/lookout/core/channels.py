"""Resolution of channel and user references typed by users (core domain).

Every whitespace-separated token of an argument string ends up in exactly
one bucket of the result, and the original token is kept next to each
result so callers can echo it back in error messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Iterable, Mapping, Optional, Union

from lookout.core.models import Channel, ChannelKind, UserInfo
from lookout.core.ports import PermissionsPort, UserDirectoryPort

CHANNEL_MENTION_PREFIX = "<#"
CHANNEL_MENTION_SUFFIX = ">"

_NUMERIC_ID = re.compile(r"[0-9]+")
_USER_REFERENCE = re.compile(r"([0-9]{16,20})|<@!?([0-9]{16,20})>")


@dataclass
class ChannelsFromArgs:
    found: list[tuple[Channel, str]] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)


@dataclass
class ReadableChannelsFromArgs:
    """Channels split by who is able to read them.

    Requester failures are checked first so a channel the requester cannot
    see is never reported as a bot permission problem.
    """

    not_found: list[str] = field(default_factory=list)
    found: list[Channel] = field(default_factory=list)
    user_cant_read: list[tuple[Channel, str]] = field(default_factory=list)
    self_cant_read: list[Channel] = field(default_factory=list)


@dataclass
class UsersFromArgs:
    found: list[UserInfo] = field(default_factory=list)
    not_found: list[int] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)


def text_channels(channels: Iterable[Channel]) -> dict[int, Channel]:
    """Return the text channels of a guild keyed by id."""

    return {channel.id: channel for channel in channels if channel.kind is ChannelKind.TEXT}


def _parse_id(value: str) -> Optional[int]:
    if not _NUMERIC_ID.fullmatch(value):
        return None
    return int(value)


def get_channel_from_arg(channels: Mapping[int, Channel], arg: str) -> Optional[Channel]:
    """Resolve one token by id, then by mention, then by unambiguous name."""

    channel_id = _parse_id(arg)
    if channel_id is not None:
        return channels.get(channel_id)

    if arg.startswith(CHANNEL_MENTION_PREFIX) and arg.endswith(CHANNEL_MENTION_SUFFIX):
        channel_id = _parse_id(arg[len(CHANNEL_MENTION_PREFIX) : -len(CHANNEL_MENTION_SUFFIX)])
        if channel_id is not None:
            return channels.get(channel_id)

    lowered = arg.lower()
    named = [channel for channel in channels.values() if channel.name.lower() == lowered]
    if len(named) == 1:
        return named[0]
    return None


def get_channels_from_args(channels: Mapping[int, Channel], args: str) -> ChannelsFromArgs:
    result = ChannelsFromArgs()
    for arg in args.split():
        channel = get_channel_from_arg(channels, arg)
        if channel is None:
            result.not_found.append(arg)
        else:
            result.found.append((channel, arg))
    return result


async def get_readable_channels_from_args(
    permissions: PermissionsPort,
    author_id: int,
    channels: Mapping[int, Channel],
    args: str,
) -> ReadableChannelsFromArgs:
    """Resolve channels and check that both the requester and the bot can read them.

    Raises ResolutionError when a permission query cannot be answered.
    """

    all_channels = get_channels_from_args(channels, args)
    result = ReadableChannelsFromArgs(not_found=all_channels.not_found)
    self_id = permissions.current_user_id

    for channel, arg in all_channels.found:
        user_can_read = await permissions.user_can_read_channel(channel.id, author_id)
        self_can_read = await permissions.user_can_read_channel(channel.id, self_id)

        if not user_can_read:
            result.user_cant_read.append((channel, arg))
        elif not self_can_read:
            result.self_cant_read.append(channel)
        else:
            result.found.append(channel)

    return result


def get_ids_from_args(args: str) -> list[Union[tuple[int, str], str]]:
    """Parse tokens as raw ids, for channels that may no longer exist."""

    results: list[Union[tuple[int, str], str]] = []
    for arg in args.split():
        channel_id = _parse_id(arg)
        results.append((channel_id, arg) if channel_id is not None else arg)
    return results


async def get_users_from_args(users: UserDirectoryPort, args: str) -> UsersFromArgs:
    results = UsersFromArgs()

    for word in args.split():
        match = _USER_REFERENCE.fullmatch(word)
        if match is None:
            results.invalid.append(word)
            continue

        user_id = int(match.group(1) or match.group(2))
        user = await users.fetch_user(user_id)
        if user is None:
            results.not_found.append(user_id)
        else:
            results.found.append(user)

    return results
