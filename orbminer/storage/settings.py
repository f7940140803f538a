import logging
import time
from typing import Optional

import aiosqlite

logger = logging.getLogger("storage")

DEFAULT_SETTINGS = {
    "motherload_threshold": 5000.0,
    "sol_per_block": 0.001,
    "num_blocks": 10,
    "automation_budget_percent": 50.0,
    # Auto-claim triggers once unclaimed rewards reach these amounts; 0 disables.
    "auto_claim_sol_threshold": 0.01,
    "auto_claim_orb_threshold": 10000.0,
}

# field -> (min, max)
LIMITS = {
    "motherload_threshold": (0.0, None),
    "sol_per_block": (0.000001, None),
    "num_blocks": (1, 25),
    "automation_budget_percent": (1.0, 100.0),
    "auto_claim_sol_threshold": (0.0, None),
    "auto_claim_orb_threshold": (0.0, None),
}

_COLUMNS = (
    "user_id, motherload_threshold, sol_per_block, num_blocks, "
    "automation_budget_percent, auto_claim_sol_threshold, auto_claim_orb_threshold, created_at, updated_at"
)


class SettingsRepo:
    """Per-user automation settings, created with defaults on first read."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def _fetch(self, user_id: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM user_settings WHERE user_id = ?", (user_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "user_id": row[0],
            "motherload_threshold": row[1],
            "sol_per_block": row[2],
            "num_blocks": row[3],
            "automation_budget_percent": row[4],
            "auto_claim_sol_threshold": row[5],
            "auto_claim_orb_threshold": row[6],
            "created_at": row[7],
            "updated_at": row[8],
        }

    async def get(self, user_id: str) -> dict:
        settings = await self._fetch(user_id)
        if settings is None:
            now = time.time()
            await self._db.execute(
                "INSERT OR IGNORE INTO user_settings (user_id, created_at, updated_at) VALUES (?, ?, ?)",
                (user_id, now, now),
            )
            await self._db.commit()
            logger.info("Created default settings for %s", user_id)
            settings = await self._fetch(user_id)
        return settings

    async def update(self, user_id: str, **fields) -> dict:
        unknown = set(fields) - set(DEFAULT_SETTINGS)
        if unknown:
            raise ValueError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        for key, value in fields.items():
            lo, hi = LIMITS[key]
            if value is None or value < lo or (hi is not None and value > hi):
                raise ValueError(f"{key} out of range: {value}")
        await self.get(user_id)
        if not fields:
            return await self.get(user_id)
        assignments = ", ".join(f"{k} = ?" for k in fields)
        await self._db.execute(
            f"UPDATE user_settings SET {assignments}, updated_at = ? WHERE user_id = ?",
            (*fields.values(), time.time(), user_id),
        )
        await self._db.commit()
        logger.info("Updated %d setting(s) for %s", len(fields), user_id)
        return await self.get(user_id)

    async def reset(self, user_id: str) -> dict:
        await self._db.execute("DELETE FROM user_settings WHERE user_id = ?", (user_id,))
        await self._db.commit()
        return await self.get(user_id)
