import time
from typing import List

import aiosqlite

_COLUMNS = "user_id, round_id, motherlode, deployed_sol, squares_deployed, created_at"


class RoundRepo:
    """Round participation history, one row per (user, round)."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def record(
        self,
        user_id: str,
        round_id: int,
        motherlode: float,
        deployed_sol: float,
        squares_deployed: int,
    ):
        await self._db.execute(
            "INSERT INTO user_rounds (user_id, round_id, motherlode, deployed_sol, squares_deployed, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(user_id, round_id) DO UPDATE SET "
            "motherlode = excluded.motherlode, deployed_sol = excluded.deployed_sol, "
            "squares_deployed = excluded.squares_deployed",
            (user_id, round_id, motherlode, deployed_sol, squares_deployed, time.time()),
        )
        await self._db.commit()

    async def list_for_user(self, user_id: str, limit: int = 10) -> List[dict]:
        results = []
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM user_rounds WHERE user_id = ? ORDER BY round_id DESC LIMIT ?",
            (user_id, limit),
        ) as cursor:
            async for row in cursor:
                results.append({
                    "user_id": row[0],
                    "round_id": row[1],
                    "motherlode": row[2],
                    "deployed_sol": row[3],
                    "squares_deployed": row[4],
                    "created_at": row[5],
                })
        return results

    async def stats_for_user(self, user_id: str) -> dict:
        async with self._db.execute(
            "SELECT COUNT(*), COALESCE(SUM(deployed_sol), 0), "
            "COALESCE(AVG(deployed_sol), 0), COALESCE(AVG(motherlode), 0) "
            "FROM user_rounds WHERE user_id = ?",
            (user_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return {
            "total_rounds": row[0],
            "total_deployed": row[1],
            "avg_deployment": row[2],
            "avg_motherlode": row[3],
        }
