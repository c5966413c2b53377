"""Pairing requests and the dynamic allow-list they grow."""

from __future__ import annotations

import secrets
from typing import Callable, Optional

from webhook_bridge.core.types import now_ms
from webhook_bridge.log import get_logger
from webhook_bridge.storage.database import Database
from webhook_bridge.storage.models import PairingRequest

logger = get_logger(__name__)

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8
DEFAULT_TTL_MINUTES = 60


def generate_pairing_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


class PairingRepository:
    """Pending pairing requests keyed by (channel, sender) plus approved senders.

    A pending request lives for ``ttl_minutes``. While it is pending, further
    upserts for the same sender return the existing code with ``created=False``.
    """

    def __init__(
        self,
        db: Database,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
        clock: Callable[[], int] = now_ms,
    ):
        self._db = db
        self._ttl_ms = ttl_minutes * 60_000
        self._clock = clock

    async def upsert_pairing_request(
        self, channel: str, sender_id: str, meta: Optional[dict] = None
    ) -> tuple[str, bool]:
        """Create or fetch the pending request for a sender. Returns (code, created)."""
        now = self._clock()
        await self._db.conn.execute(
            "DELETE FROM pairing_requests WHERE channel = ? AND sender_id = ? AND expires_at <= ?",
            (channel, sender_id, now),
        )
        sender_name = (meta or {}).get("name")
        while True:
            existing = await self._pending_code(channel, sender_id)
            if existing is not None:
                await self._db.conn.commit()
                return existing, False

            # A concurrent upsert for the same sender, or a code collision,
            # leaves rowcount at 0; re-check the sender's row and retry.
            code = await self._unused_code(channel)
            cursor = await self._db.conn.execute(
                """INSERT INTO pairing_requests
                   (channel, sender_id, code, sender_name, created_at, expires_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT DO NOTHING""",
                (channel, sender_id, code, sender_name, now, now + self._ttl_ms),
            )
            if cursor.rowcount == 1:
                await self._db.conn.commit()
                logger.info("pairing_request_created", channel=channel, sender_id=sender_id)
                return code, True

    async def _pending_code(self, channel: str, sender_id: str) -> Optional[str]:
        cursor = await self._db.conn.execute(
            "SELECT code FROM pairing_requests WHERE channel = ? AND sender_id = ?",
            (channel, sender_id),
        )
        row = await cursor.fetchone()
        return row["code"] if row else None

    async def _unused_code(self, channel: str) -> str:
        while True:
            code = generate_pairing_code()
            cursor = await self._db.conn.execute(
                "SELECT 1 FROM pairing_requests WHERE channel = ? AND code = ?",
                (channel, code),
            )
            if await cursor.fetchone() is None:
                return code

    async def read_allow_from(self, channel: str) -> list[str]:
        cursor = await self._db.conn.execute(
            "SELECT sender_id FROM allow_from WHERE channel = ? ORDER BY approved_at",
            (channel,),
        )
        rows = await cursor.fetchall()
        return [row["sender_id"] for row in rows]

    async def list_pending(self, channel: str) -> list[PairingRequest]:
        cursor = await self._db.conn.execute(
            """SELECT * FROM pairing_requests
               WHERE channel = ? AND expires_at > ?
               ORDER BY created_at""",
            (channel, self._clock()),
        )
        rows = await cursor.fetchall()
        return [self._row_to_request(row) for row in rows]

    async def approve(self, channel: str, code: str) -> Optional[PairingRequest]:
        """Approve a pending request by code, moving its sender to the allow-list."""
        now = self._clock()
        cursor = await self._db.conn.execute(
            """SELECT * FROM pairing_requests
               WHERE channel = ? AND code = ? AND expires_at > ?""",
            (channel, code.strip().upper(), now),
        )
        row = await cursor.fetchone()
        if row is None:
            return None

        request = self._row_to_request(row)
        await self._db.conn.execute(
            """INSERT INTO allow_from (channel, sender_id, approved_at)
               VALUES (?, ?, ?)
               ON CONFLICT(channel, sender_id) DO NOTHING""",
            (channel, request.sender_id, now),
        )
        await self._db.conn.execute(
            "DELETE FROM pairing_requests WHERE channel = ? AND sender_id = ?",
            (channel, request.sender_id),
        )
        await self._db.conn.commit()
        logger.info("pairing_approved", channel=channel, sender_id=request.sender_id)
        return request

    async def purge_expired(self, channel: str) -> int:
        cursor = await self._db.conn.execute(
            "DELETE FROM pairing_requests WHERE channel = ? AND expires_at <= ?",
            (channel, self._clock()),
        )
        await self._db.conn.commit()
        return cursor.rowcount

    @staticmethod
    def _row_to_request(row) -> PairingRequest:
        return PairingRequest(
            channel=row["channel"],
            sender_id=row["sender_id"],
            code=row["code"],
            sender_name=row["sender_name"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
        )
