"""Session metadata: last activity per session key."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Optional

from webhook_bridge.core.types import now_ms
from webhook_bridge.storage.database import Database

if TYPE_CHECKING:
    from webhook_bridge.core.context import InboundContext


class SessionRepository:
    def __init__(self, db: Database, clock: Callable[[], int] = now_ms):
        self._db = db
        self._clock = clock

    @property
    def store_path(self) -> str:
        return self._db.path

    async def read_updated_at(self, session_key: str) -> Optional[int]:
        """Epoch ms of the last recorded inbound for ``session_key``, if any."""
        cursor = await self._db.conn.execute(
            "SELECT updated_at FROM sessions WHERE session_key = ?",
            (session_key,),
        )
        row = await cursor.fetchone()
        return row["updated_at"] if row else None

    async def record_inbound(self, session_key: str, ctx: InboundContext) -> None:
        now = self._clock()
        await self._db.conn.execute(
            """INSERT INTO sessions
               (session_key, account_id, channel, sender_id, sender_name,
                created_at, updated_at, last_message_id)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(session_key) DO UPDATE SET
                   sender_name = excluded.sender_name,
                   updated_at = excluded.updated_at,
                   last_message_id = excluded.last_message_id""",
            (
                session_key,
                ctx.account_id,
                ctx.provider,
                ctx.sender_id,
                ctx.sender_name,
                now,
                now,
                ctx.message_sid,
            ),
        )
        await self._db.conn.commit()
