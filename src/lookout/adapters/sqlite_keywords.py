"""SQLite keyword subscription store.

Holds guild-wide and channel-specific keywords, channel mutes, and ignored
phrases. Uniqueness of (keyword, user, scope) is enforced by the schema.
"""

from __future__ import annotations

from lookout.adapters.sqlite_storage import SQLiteStorage
from lookout.core.errors import KeywordLimitError
from lookout.core.models import Keyword, KeywordKind

_TABLES = {
    KeywordKind.GUILD: ("guild_keywords", "guild_id"),
    KeywordKind.CHANNEL: ("channel_keywords", "channel_id"),
}


def normalize_keyword(keyword: str) -> str:
    """Keywords are matched case-insensitively, so they are stored lower-cased."""

    normalized = " ".join(keyword.split()).lower()
    if not normalized:
        raise ValueError("Keyword must not be empty")
    return normalized


class SQLiteKeywordStore(SQLiteStorage):
    """Keyword subscriptions, mutes, and ignores."""

    def init_table(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS guild_keywords (
                    keyword TEXT NOT NULL,
                    user_id INTEGER NOT NULL,
                    guild_id INTEGER NOT NULL,
                    UNIQUE (keyword, user_id, guild_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS channel_keywords (
                    keyword TEXT NOT NULL,
                    user_id INTEGER NOT NULL,
                    channel_id INTEGER NOT NULL,
                    UNIQUE (keyword, user_id, channel_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS mutes (
                    user_id INTEGER NOT NULL,
                    channel_id INTEGER NOT NULL,
                    UNIQUE (user_id, channel_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS guild_ignores (
                    phrase TEXT NOT NULL,
                    user_id INTEGER NOT NULL,
                    guild_id INTEGER NOT NULL,
                    UNIQUE (phrase, user_id, guild_id)
                )
                """
            )

    def add_keyword(self, keyword: Keyword, max_keywords: int) -> bool:
        """Add a keyword; return False if the user already had it.

        Raises KeywordLimitError when the user is at max_keywords.
        """

        table, scope_column = _TABLES[keyword.kind]
        text = normalize_keyword(keyword.keyword)
        with self._connect() as conn:
            exists = conn.execute(
                f"SELECT 1 FROM {table} WHERE keyword = ? AND user_id = ? AND {scope_column} = ?",
                (text, keyword.user_id, keyword.scope_id),
            ).fetchone()
            if exists:
                return False

            count = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM guild_keywords WHERE user_id = ?)
                    + (SELECT COUNT(*) FROM channel_keywords WHERE user_id = ?)
                """,
                (keyword.user_id, keyword.user_id),
            ).fetchone()[0]
            if count >= max_keywords:
                raise KeywordLimitError(keyword.user_id, max_keywords)

            conn.execute(
                f"INSERT INTO {table} (keyword, user_id, {scope_column}) VALUES (?, ?, ?)",
                (text, keyword.user_id, keyword.scope_id),
            )
        return True

    def remove_keyword(self, keyword: Keyword) -> bool:
        table, scope_column = _TABLES[keyword.kind]
        with self._connect() as conn:
            cur = conn.execute(
                f"DELETE FROM {table} WHERE keyword = ? AND user_id = ? AND {scope_column} = ?",
                (normalize_keyword(keyword.keyword), keyword.user_id, keyword.scope_id),
            )
            return cur.rowcount > 0

    def user_keywords(self, user_id: int) -> list[Keyword]:
        with self._connect() as conn:
            guild_rows = conn.execute(
                "SELECT keyword, guild_id FROM guild_keywords WHERE user_id = ? ORDER BY guild_id, keyword",
                (user_id,),
            ).fetchall()
            channel_rows = conn.execute(
                "SELECT keyword, channel_id FROM channel_keywords WHERE user_id = ? ORDER BY channel_id, keyword",
                (user_id,),
            ).fetchall()

        keywords = [
            Keyword(keyword=row["keyword"], user_id=user_id, kind=KeywordKind.GUILD, scope_id=int(row["guild_id"]))
            for row in guild_rows
        ]
        keywords.extend(
            Keyword(keyword=row["keyword"], user_id=user_id, kind=KeywordKind.CHANNEL, scope_id=int(row["channel_id"]))
            for row in channel_rows
        )
        return keywords

    def keywords_for_message(self, guild_id: int, channel_id: int) -> list[Keyword]:
        """Return the keywords that apply to a message in the given guild and channel."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT keyword, user_id, 'guild' AS kind, guild_id AS scope_id
                FROM guild_keywords WHERE guild_id = ?
                UNION ALL
                SELECT keyword, user_id, 'channel' AS kind, channel_id AS scope_id
                FROM channel_keywords WHERE channel_id = ?
                """,
                (guild_id, channel_id),
            ).fetchall()
        return [
            Keyword(
                keyword=row["keyword"],
                user_id=int(row["user_id"]),
                kind=KeywordKind(row["kind"]),
                scope_id=int(row["scope_id"]),
            )
            for row in rows
        ]

    def delete_channel_keywords(self, channel_id: int) -> int:
        """Forget the keywords and mutes of a deleted channel."""

        with self._connect() as conn:
            cur = conn.execute("DELETE FROM channel_keywords WHERE channel_id = ?", (channel_id,))
            removed = cur.rowcount
            conn.execute("DELETE FROM mutes WHERE channel_id = ?", (channel_id,))
        return removed

    def mute(self, user_id: int, channel_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO mutes (user_id, channel_id) VALUES (?, ?)",
                (user_id, channel_id),
            )
            return cur.rowcount > 0

    def unmute(self, user_id: int, channel_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM mutes WHERE user_id = ? AND channel_id = ?",
                (user_id, channel_id),
            )
            return cur.rowcount > 0

    def user_mutes(self, user_id: int) -> list[int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT channel_id FROM mutes WHERE user_id = ? ORDER BY channel_id",
                (user_id,),
            ).fetchall()
        return [int(row["channel_id"]) for row in rows]

    def muted_users(self, channel_id: int) -> set[int]:
        with self._connect() as conn:
            rows = conn.execute("SELECT user_id FROM mutes WHERE channel_id = ?", (channel_id,)).fetchall()
        return {int(row["user_id"]) for row in rows}

    def add_ignore(self, user_id: int, guild_id: int, phrase: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO guild_ignores (phrase, user_id, guild_id) VALUES (?, ?, ?)",
                (normalize_keyword(phrase), user_id, guild_id),
            )
            return cur.rowcount > 0

    def remove_ignore(self, user_id: int, guild_id: int, phrase: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM guild_ignores WHERE phrase = ? AND user_id = ? AND guild_id = ?",
                (normalize_keyword(phrase), user_id, guild_id),
            )
            return cur.rowcount > 0

    def user_ignores(self, user_id: int) -> list[tuple[int, str]]:
        """Return (guild_id, phrase) pairs ignored by a user."""

        with self._connect() as conn:
            rows = conn.execute(
                "SELECT guild_id, phrase FROM guild_ignores WHERE user_id = ? ORDER BY guild_id, phrase",
                (user_id,),
            ).fetchall()
        return [(int(row["guild_id"]), row["phrase"]) for row in rows]

    def ignored_phrases(self, guild_id: int) -> dict[int, list[str]]:
        """Return the ignored phrases of a guild grouped by user."""

        with self._connect() as conn:
            rows = conn.execute(
                "SELECT user_id, phrase FROM guild_ignores WHERE guild_id = ? ORDER BY user_id, phrase",
                (guild_id,),
            ).fetchall()
        phrases: dict[int, list[str]] = {}
        for row in rows:
            phrases.setdefault(int(row["user_id"]), []).append(row["phrase"])
        return phrases
