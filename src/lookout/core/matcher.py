"""Keyword compilation and matching logic (core domain)."""

from __future__ import annotations

import functools
import logging
import re

from lookout.core.models import Candidate, MessageContext, UserStateKind
from lookout.core.ports import KeywordStorePort, PermissionsPort, UserStatePort

LOGGER = logging.getLogger(__name__)

_WORD_CHAR = re.compile(r"\w")


@functools.lru_cache(maxsize=4096)
def keyword_pattern(keyword: str) -> re.Pattern:
    """Compile a keyword into a case-insensitive pattern.

    Word boundaries are only required on edges that are word characters, so
    "rust" won't match "trust" while "c++" still matches "c++ is fun". Words
    of a multi-word keyword may be separated by any run of whitespace.
    """

    words = keyword.split()
    prefix = r"\b" if _WORD_CHAR.match(words[0][0]) else ""
    suffix = r"\b" if _WORD_CHAR.match(words[-1][-1]) else ""
    body = r"\s+".join(re.escape(word) for word in words)
    return re.compile(f"{prefix}{body}{suffix}", re.IGNORECASE)


def keyword_matches(keyword: str, content: str) -> bool:
    if not keyword.strip():
        return False
    return keyword_pattern(keyword).search(content) is not None


def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


class KeywordMatcher:
    """Find the subscribers who should be told about a message."""

    def __init__(
        self,
        keywords: KeywordStorePort,
        user_states: UserStatePort,
        permissions: PermissionsPort,
    ) -> None:
        self._keywords = keywords
        self._user_states = user_states
        self._permissions = permissions

    async def find_candidates(self, context: MessageContext) -> list[Candidate]:
        """Return at most one candidate per subscriber for this message.

        Checks run cheapest first; the permission query is the only one that
        may hit the network.
        """

        if context.guild_id is None:
            return []

        keywords = sorted(
            self._keywords.keywords_for_message(context.guild_id, context.channel_id),
            key=lambda item: (item.user_id, item.keyword),
        )
        if not keywords:
            return []

        muted = self._keywords.muted_users(context.channel_id)
        ignores = self._keywords.ignored_phrases(context.guild_id)
        lowered = collapse_whitespace(context.content).lower()

        candidates: list[Candidate] = []
        considered: set[int] = set()
        for keyword in keywords:
            user_id = keyword.user_id
            if user_id == context.author.id or user_id in considered:
                continue
            if not keyword_matches(keyword.keyword, context.content):
                continue
            # Any later keyword of this user would hit the same filters.
            considered.add(user_id)

            if user_id in muted:
                continue
            phrases = ignores.get(user_id, [])
            if any(collapse_whitespace(phrase).lower() in lowered for phrase in phrases):
                continue
            state = self._user_states.user_state(user_id)
            if state is not None and state.state is UserStateKind.CANNOT_DM:
                LOGGER.debug("Skipping %s: cannot be direct-messaged", user_id)
                continue
            if not await self._permissions.user_can_read_channel(context.channel_id, user_id):
                continue

            candidates.append(Candidate(user_id=user_id, keyword=keyword.keyword))

        return candidates
