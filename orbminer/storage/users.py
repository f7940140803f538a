import logging
import time
from typing import List, Optional

import aiosqlite

logger = logging.getLogger("storage")

_COLUMNS = "user_id, public_key, encrypted_key, created_at, updated_at"


def _row_to_dict(row) -> dict:
    return {
        "user_id": row[0],
        "public_key": row[1],
        "encrypted_key": row[2],
        "created_at": row[3],
        "updated_at": row[4],
    }


class UserRepo:
    """CRUD operations for the users table."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def create(self, user_id: str, public_key: str, encrypted_key: str) -> dict:
        """Insert or replace the wallet for ``user_id``."""
        now = time.time()
        await self._db.execute(
            "INSERT INTO users (user_id, public_key, encrypted_key, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(user_id) DO UPDATE SET public_key = excluded.public_key, "
            "encrypted_key = excluded.encrypted_key, updated_at = excluded.updated_at",
            (user_id, public_key, encrypted_key, now, now),
        )
        await self._db.commit()
        return await self.get(user_id)

    async def get(self, user_id: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM users WHERE user_id = ?", (user_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_dict(row)

    async def list_with_wallet(self) -> List[dict]:
        """Users with a known public key, without their encrypted secret."""
        results = []
        async with self._db.execute(
            "SELECT user_id, public_key FROM users WHERE public_key != '' ORDER BY created_at, rowid"
        ) as cursor:
            async for row in cursor:
                results.append({"user_id": row[0], "public_key": row[1]})
        return results

    async def delete(self, user_id: str) -> bool:
        cursor = await self._db.execute("DELETE FROM users WHERE user_id = ?", (user_id,))
        await self._db.commit()
        return cursor.rowcount > 0

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM users") as cursor:
            row = await cursor.fetchone()
        return row[0]
