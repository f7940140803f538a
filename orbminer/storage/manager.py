import logging
from typing import Optional

try:
    import aiosqlite
except ImportError:
    raise ImportError(
        "aiosqlite is required for the storage layer. "
        "Install with: pip install aiosqlite"
    )

from ._migrate import run_migrations
from .notifications import NotificationRepo
from .rounds import RoundRepo
from .settings import SettingsRepo
from .transactions import TransactionRepo
from .users import UserRepo

logger = logging.getLogger("storage")


class StorageManager:
    """Top-level manager: opens the database, runs migrations, exposes repos."""

    def __init__(self, db_path: str = "orbminer.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self.users: Optional[UserRepo] = None
        self.settings: Optional[SettingsRepo] = None
        self.transactions: Optional[TransactionRepo] = None
        self.rounds: Optional[RoundRepo] = None
        self.notifications: Optional[NotificationRepo] = None

    async def initialize(self):
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await run_migrations(self._db, logger)

        self.users = UserRepo(self._db)
        self.settings = SettingsRepo(self._db)
        self.transactions = TransactionRepo(self._db)
        self.rounds = RoundRepo(self._db)
        self.notifications = NotificationRepo(self._db)

        logger.info("Storage initialized: %s", self.db_path)

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Storage closed")
