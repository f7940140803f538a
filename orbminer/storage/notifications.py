import time
from typing import List

import aiosqlite

_COLUMNS = "id, user_id, type, title, message, delivered, created_at"


def _row_to_dict(row) -> dict:
    return {
        "id": row[0],
        "user_id": row[1],
        "type": row[2],
        "title": row[3],
        "message": row[4],
        "delivered": bool(row[5]),
        "created_at": row[6],
    }


class NotificationRepo:
    """Outbox of user-facing notifications."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def push(self, user_id: str, ntype: str, title: str, message: str) -> int:
        cursor = await self._db.execute(
            "INSERT INTO notifications (user_id, type, title, message, created_at) VALUES (?, ?, ?, ?, ?)",
            (user_id, ntype, title, message, time.time()),
        )
        await self._db.commit()
        return cursor.lastrowid

    async def list_for_user(self, user_id: str, limit: int = 20) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM notifications WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results

    async def list_pending(self, limit: int = 100) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM notifications WHERE delivered = 0 ORDER BY id LIMIT ?",
            (limit,),
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results

    async def mark_delivered(self, notification_ids: List[int]):
        if not notification_ids:
            return
        await self._db.executemany(
            "UPDATE notifications SET delivered = 1 WHERE id = ?",
            [(nid,) for nid in notification_ids],
        )
        await self._db.commit()
