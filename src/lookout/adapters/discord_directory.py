"""Read-only queries against the Discord client's cache and API.

Implements PermissionsPort and UserDirectoryPort, and looks up the display
names used in notifications.
"""

from __future__ import annotations

import logging
from typing import Optional

import discord

from lookout.adapters.discord_mapper import channel_from_discord
from lookout.core.channels import text_channels
from lookout.core.errors import ResolutionError
from lookout.core.models import Channel, UserInfo

LOGGER = logging.getLogger(__name__)


class DiscordDirectory:
    """Channel, guild, user, and permission lookups backed by a discord.Client."""

    def __init__(self, client: discord.Client) -> None:
        self._client = client

    @property
    def current_user_id(self) -> int:
        user = self._client.user
        if user is None:
            raise ResolutionError("Client is not logged in")
        return user.id

    def _guild_channel(self, channel_id: int):
        channel = self._client.get_channel(channel_id)
        if channel is None or getattr(channel, "guild", None) is None:
            raise ResolutionError(f"Couldn't get channel {channel_id}")
        return channel

    def _guild(self, guild_id: int) -> discord.Guild:
        guild = self._client.get_guild(guild_id)
        if guild is None:
            raise ResolutionError(f"Couldn't get guild {guild_id}")
        return guild

    def channel_name(self, channel_id: int) -> str:
        return self._guild_channel(channel_id).name

    def guild_name(self, guild_id: int) -> str:
        return self._guild(guild_id).name

    async def text_channels_in_guild(self, guild_id: int) -> dict[int, Channel]:
        """Text channels of a guild, from the cache or else from the API."""

        guild = self._client.get_guild(guild_id)
        try:
            if guild is not None:
                channels = guild.channels
            else:
                guild = await self._client.fetch_guild(guild_id)
                channels = await guild.fetch_channels()
        except discord.HTTPException as error:
            raise ResolutionError(f"Couldn't fetch channels of guild {guild_id}") from error
        return text_channels(channel_from_discord(channel) for channel in channels)

    async def _member(self, guild: discord.Guild, user_id: int) -> Optional[discord.Member]:
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.NotFound:
            return None
        except discord.HTTPException as error:
            raise ResolutionError(f"Couldn't fetch member {user_id} of guild {guild.id}") from error

    async def user_can_read_channel(self, channel_id: int, user_id: int) -> bool:
        channel = self._guild_channel(channel_id)
        member = await self._member(channel.guild, user_id)
        if member is None:
            # Users who left the guild can't read any of it.
            return False
        return channel.permissions_for(member).read_messages

    async def fetch_user(self, user_id: int) -> Optional[UserInfo]:
        user = self._client.get_user(user_id)
        if user is None:
            try:
                user = await self._client.fetch_user(user_id)
            except discord.NotFound:
                return None
            except discord.HTTPException as error:
                raise ResolutionError(f"Couldn't fetch user {user_id}") from error
        return UserInfo(id=user.id, name=user.name)

    async def fetch_discord_user(self, user_id: int) -> discord.User:
        """Return the discord.py user object needed to open a DM channel."""

        user = self._client.get_user(user_id)
        if user is not None:
            return user
        try:
            return await self._client.fetch_user(user_id)
        except discord.HTTPException as error:
            raise ResolutionError(f"Couldn't fetch user {user_id}") from error
