import time
from typing import List, Optional

import aiosqlite

_COLUMNS = "id, user_id, type, signature, round_id, sol_amount, orb_amount, status, notes, created_at"


def _row_to_dict(row) -> dict:
    return {
        "id": row[0],
        "user_id": row[1],
        "type": row[2],
        "signature": row[3],
        "round_id": row[4],
        "sol_amount": row[5],
        "orb_amount": row[6],
        "status": row[7],
        "notes": row[8],
        "created_at": row[9],
    }


class TransactionRepo:
    """Insert + queries for the submitted-transaction audit log."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def record(
        self,
        user_id: str,
        tx_type: str,
        signature: str,
        sol_amount: float = 0.0,
        round_id: Optional[int] = None,
        status: str = "success",
        notes: str = "",
        orb_amount: float = 0.0,
    ) -> dict:
        now = time.time()
        cursor = await self._db.execute(
            "INSERT INTO transactions (user_id, type, signature, round_id, sol_amount, orb_amount, status, notes, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (user_id, tx_type, signature, round_id, sol_amount, orb_amount, status, notes, now),
        )
        await self._db.commit()
        return {
            "id": cursor.lastrowid,
            "user_id": user_id,
            "type": tx_type,
            "signature": signature,
            "round_id": round_id,
            "sol_amount": sol_amount,
            "orb_amount": orb_amount,
            "status": status,
            "notes": notes,
            "created_at": now,
        }

    async def list_for_user(self, user_id: str, limit: int = 50) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM transactions WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        ) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results

    async def list_all(self, limit: Optional[int] = None) -> List[dict]:
        results = []
        query = f"SELECT {_COLUMNS} FROM transactions ORDER BY id DESC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        async with self._db.execute(query, params) as cursor:
            async for row in cursor:
                results.append(_row_to_dict(row))
        return results
