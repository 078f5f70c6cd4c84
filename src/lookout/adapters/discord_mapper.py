"""Discord-to-core mapping adapter.

This keeps discord.py-specific types out of the core pipeline.
"""

from __future__ import annotations

from typing import Optional

import discord

from lookout.core.models import Author, Channel, ChannelKind, MessageContext

_TEXT_TYPES = {discord.ChannelType.text, discord.ChannelType.news}
_VOICE_TYPES = {discord.ChannelType.voice, discord.ChannelType.stage_voice}


def build_permalink(guild_id: Optional[int], channel_id: int, message_id: int) -> str:
    guild_part = str(guild_id) if guild_id is not None else "@me"
    return f"https://discord.com/channels/{guild_part}/{channel_id}/{message_id}"


def _avatar_url(user) -> Optional[str]:
    avatar = getattr(user, "display_avatar", None)
    if avatar is None:
        return None
    return str(avatar.url)


def build_context(message: discord.Message) -> MessageContext:
    """Build a core MessageContext from a discord.py Message."""

    guild = getattr(message, "guild", None)
    guild_id = guild.id if guild is not None else None
    author = message.author

    return MessageContext(
        message_id=message.id,
        channel_id=message.channel.id,
        guild_id=guild_id,
        author=Author(
            id=author.id,
            name=getattr(author, "display_name", None) or author.name,
            avatar_url=_avatar_url(author),
            bot=bool(getattr(author, "bot", False)),
        ),
        timestamp=message.created_at,
        content=message.content or "",
        permalink=build_permalink(guild_id, message.channel.id, message.id),
    )


def channel_kind(channel_type: discord.ChannelType) -> ChannelKind:
    if channel_type in _TEXT_TYPES:
        return ChannelKind.TEXT
    if channel_type in _VOICE_TYPES:
        return ChannelKind.VOICE
    if channel_type == discord.ChannelType.category:
        return ChannelKind.CATEGORY
    return ChannelKind.OTHER


def channel_from_discord(channel: discord.abc.GuildChannel) -> Channel:
    return Channel(
        id=channel.id,
        name=channel.name,
        guild_id=channel.guild.id,
        kind=channel_kind(channel.type),
    )
