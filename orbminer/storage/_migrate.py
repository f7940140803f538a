import logging
import time

from ._schema import SCHEMA_SQL, SCHEMA_VERSION

logger = logging.getLogger("storage")

_TRANSACTION_COLUMNS = "id, user_id, type, signature, round_id, sol_amount, status, notes, created_at"


async def _columns(db, table: str) -> set:
    async with db.execute(f"PRAGMA table_info({table})") as cursor:
        return {row[1] async for row in cursor}


async def _migrate_v3(db):
    """Claim settings, and claim types plus orb_amount on the transaction log."""
    existing = await _columns(db, "user_settings")
    for column, default in (("auto_claim_sol_threshold", 0.01), ("auto_claim_orb_threshold", 10000)):
        if column not in existing:
            await db.execute(
                f"ALTER TABLE user_settings ADD COLUMN {column} REAL NOT NULL DEFAULT {default}"
            )

    if "orb_amount" in await _columns(db, "transactions"):
        return
    # The type CHECK constraint can only change by rebuilding the table.
    await db.execute("ALTER TABLE transactions RENAME TO transactions_v2")
    await db.executescript(SCHEMA_SQL)
    await db.execute(
        f"INSERT INTO transactions ({_TRANSACTION_COLUMNS}) "
        f"SELECT {_TRANSACTION_COLUMNS} FROM transactions_v2"
    )
    await db.execute("DROP TABLE transactions_v2")
    await db.executescript(SCHEMA_SQL)


async def run_migrations(db, logger_override=None):
    log = logger_override or logger
    current_version = 0
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cursor:
            row = await cursor.fetchone()
            if row and row[0] is not None:
                current_version = row[0]
    except Exception:
        log.debug("No schema_version table yet")

    if current_version < SCHEMA_VERSION:
        log.info("Migrating database from v%d to v%d", current_version, SCHEMA_VERSION)
        await db.executescript(SCHEMA_SQL)

        # v2: transaction status column
        if 0 < current_version < 2:
            try:
                await db.execute(
                    "ALTER TABLE transactions ADD COLUMN status TEXT NOT NULL DEFAULT 'success'"
                )
            except Exception:
                log.exception("V2 migration failed")

        # v3: auto-claim
        if 0 < current_version < 3:
            try:
                await _migrate_v3(db)
            except Exception:
                log.exception("V3 migration failed")

        await db.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (SCHEMA_VERSION, time.time()),
        )
        await db.commit()
        log.info("Migration complete (v%d)", SCHEMA_VERSION)
    else:
        log.debug("Database schema up to date (v%d)", current_version)
