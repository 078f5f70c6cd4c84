"""SQLite recipient state store."""

from __future__ import annotations

from typing import Optional

from lookout.adapters.sqlite_storage import SQLiteStorage
from lookout.core.models import UserState, UserStateKind


class SQLiteUserStateStore(SQLiteStorage):
    """At most one state row per user; setting a state overwrites the old one."""

    def init_table(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS user_states (
                    user_id INTEGER PRIMARY KEY,
                    state INTEGER NOT NULL
                )
                """
            )

    def user_state(self, user_id: int) -> Optional[UserState]:
        """Return the user's state, if any.

        Raises UnknownUserStateError if the stored code is not recognised.
        """

        with self._connect() as conn:
            row = conn.execute(
                "SELECT user_id, state FROM user_states WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return UserState(
            user_id=int(row["user_id"]),
            state=UserStateKind.from_code(user_id, row["state"]),
        )

    def set(self, state: UserState) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_states (user_id, state)
                VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET state = excluded.state
                """,
                (state.user_id, state.state.value),
            )

    def clear(self, user_id: int) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM user_states WHERE user_id = ?", (user_id,))
