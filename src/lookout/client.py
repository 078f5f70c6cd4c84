"""Discord client factory for lookout.

We explicitly manage the client's lifecycle (start/close) so it is obvious
when the gateway connection is opened and when it ends.
"""

from __future__ import annotations

import logging
import os

import discord
from dotenv import load_dotenv

TOKEN_ENV_VAR = "DISCORD_TOKEN"


def load_token() -> str:
    """Read the bot token via python-dotenv to keep secrets out of the repo."""

    load_dotenv()
    token = os.getenv(TOKEN_ENV_VAR)
    # Fail fast on missing credentials to avoid an ambiguous login error.
    if not token:
        raise RuntimeError(f"Missing {TOKEN_ENV_VAR} in environment")
    return token


def build_client() -> discord.Client:
    """Create a Discord client with the intents keyword matching needs.

    Message content and members are privileged intents and must be enabled
    for the bot in the developer portal.
    """

    intents = discord.Intents.default()
    intents.message_content = True
    intents.members = True

    logging.getLogger(__name__).info("Initializing Discord client")

    return discord.Client(intents=intents)
