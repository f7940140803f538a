"""
test_storage.py - Unit tests for the aiosqlite storage layer.

Migrations, user wallets, settings defaults and validation, transaction log,
round participation upserts and the notification outbox.
"""

import aiosqlite
import pytest
import pytest_asyncio

from orbminer.storage import DEFAULT_SETTINGS, SCHEMA_VERSION, StorageManager
from orbminer.storage._migrate import run_migrations

pytestmark = pytest.mark.asyncio


# ── Migrations ────────────────────────────────────────────────────────────

class TestMigrations:

    async def test_fresh_database(self, storage):
        async with storage._db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
        assert row[0] == SCHEMA_VERSION

    async def test_idempotent(self, storage):
        await run_migrations(storage._db)
        async with storage._db.execute("SELECT COUNT(*) FROM schema_version") as cur:
            row = await cur.fetchone()
        assert row[0] == 1

    async def test_upgrade_from_v1_adds_status(self):
        db = await aiosqlite.connect(":memory:")
        try:
            await db.executescript(
                "CREATE TABLE schema_version (version INTEGER PRIMARY KEY, applied_at REAL NOT NULL);"
                "INSERT INTO schema_version VALUES (1, 0);"
                "CREATE TABLE transactions (id INTEGER PRIMARY KEY AUTOINCREMENT, user_id TEXT NOT NULL,"
                " type TEXT NOT NULL, signature TEXT NOT NULL, round_id INTEGER, sol_amount REAL NOT NULL DEFAULT 0,"
                " notes TEXT NOT NULL DEFAULT '', created_at REAL NOT NULL);"
            )
            await run_migrations(db)
            async with db.execute("PRAGMA table_info(transactions)") as cur:
                columns = [row[1] async for row in cur]
            assert "status" in columns
            assert "orb_amount" in columns
        finally:
            await db.close()

    async def test_upgrade_from_v2_allows_claims(self):
        db = await aiosqlite.connect(":memory:")
        try:
            await db.executescript(
                "CREATE TABLE schema_version (version INTEGER PRIMARY KEY, applied_at REAL NOT NULL);"
                "INSERT INTO schema_version VALUES (2, 0);"
                "CREATE TABLE user_settings (user_id TEXT PRIMARY KEY, motherload_threshold REAL NOT NULL DEFAULT 5000,"
                " sol_per_block REAL NOT NULL DEFAULT 0.001, num_blocks INTEGER NOT NULL DEFAULT 10,"
                " automation_budget_percent REAL NOT NULL DEFAULT 50, created_at REAL NOT NULL, updated_at REAL NOT NULL);"
                "INSERT INTO user_settings (user_id, created_at, updated_at) VALUES ('alice', 0, 0);"
                "CREATE TABLE transactions (id INTEGER PRIMARY KEY AUTOINCREMENT, user_id TEXT NOT NULL,"
                " type TEXT NOT NULL CHECK (type IN ('automation_setup', 'automation_close', 'deploy')),"
                " signature TEXT NOT NULL, round_id INTEGER, sol_amount REAL NOT NULL DEFAULT 0,"
                " status TEXT NOT NULL DEFAULT 'success', notes TEXT NOT NULL DEFAULT '', created_at REAL NOT NULL);"
                "INSERT INTO transactions (user_id, type, signature, round_id, sol_amount, created_at)"
                " VALUES ('alice', 'deploy', 'sig1', 10, 0.01, 0);"
            )
            await run_migrations(db)

            async with db.execute("SELECT type, signature, orb_amount FROM transactions") as cur:
                assert [tuple(r) for r in await cur.fetchall()] == [("deploy", "sig1", 0.0)]
            await db.execute(
                "INSERT INTO transactions (user_id, type, signature, orb_amount, created_at)"
                " VALUES ('alice', 'claim_orb', 'sig2', 15000, 0)"
            )
            async with db.execute(
                "SELECT auto_claim_sol_threshold, auto_claim_orb_threshold FROM user_settings"
            ) as cur:
                assert tuple(await cur.fetchone()) == (0.01, 10000)
        finally:
            await db.close()

    async def test_file_database(self, tmp_path):
        path = str(tmp_path / "orb.db")
        sm = StorageManager(path)
        await sm.initialize()
        await sm.users.create("alice", "pk", "enc")
        await sm.close()

        sm = StorageManager(path)
        await sm.initialize()
        assert (await sm.users.get("alice"))["public_key"] == "pk"
        await sm.close()


# ── Users ─────────────────────────────────────────────────────────────────

class TestUserRepo:

    async def test_create_and_get(self, storage):
        user = await storage.users.create("alice", "pubA", "encA")
        assert user["user_id"] == "alice"
        assert user["public_key"] == "pubA"
        assert user["encrypted_key"] == "encA"
        assert await storage.users.get("missing") is None

    async def test_create_replaces_wallet(self, storage):
        first = await storage.users.create("alice", "pubA", "encA")
        second = await storage.users.create("alice", "pubB", "encB")
        assert second["public_key"] == "pubB"
        assert second["created_at"] == first["created_at"]
        assert await storage.users.count() == 1

    async def test_list_with_wallet(self, storage):
        await storage.users.create("alice", "pubA", "encA")
        await storage.users.create("bob", "", "")
        await storage.users.create("carol", "pubC", "encC")
        users = await storage.users.list_with_wallet()
        assert [u["user_id"] for u in users] == ["alice", "carol"]
        assert "encrypted_key" not in users[0]

    async def test_delete(self, storage):
        await storage.users.create("alice", "pubA", "encA")
        assert await storage.users.delete("alice")
        assert not await storage.users.delete("alice")


# ── Settings ──────────────────────────────────────────────────────────────

class TestSettingsRepo:

    async def test_defaults_created_on_first_read(self, storage):
        settings = await storage.settings.get("alice")
        for key, value in DEFAULT_SETTINGS.items():
            assert settings[key] == value
        assert settings["motherload_threshold"] == 5000
        assert settings["sol_per_block"] == 0.001
        assert settings["num_blocks"] == 10
        assert settings["automation_budget_percent"] == 50
        assert settings["auto_claim_sol_threshold"] == 0.01
        assert settings["auto_claim_orb_threshold"] == 10000

    async def test_update(self, storage):
        updated = await storage.settings.update("alice", num_blocks=25, sol_per_block=0.01)
        assert updated["num_blocks"] == 25
        assert updated["sol_per_block"] == 0.01
        assert updated["motherload_threshold"] == 5000

    @pytest.mark.parametrize("fields", [
        {"num_blocks": 0},
        {"num_blocks": 26},
        {"automation_budget_percent": 0},
        {"automation_budget_percent": 101},
        {"sol_per_block": 0},
        {"motherload_threshold": -1},
        {"auto_claim_sol_threshold": -0.1},
        {"unknown_field": 1},
    ])
    async def test_update_validation(self, storage, fields):
        with pytest.raises(ValueError):
            await storage.settings.update("alice", **fields)
        assert (await storage.settings.get("alice"))["num_blocks"] == 10

    async def test_reset(self, storage):
        await storage.settings.update("alice", num_blocks=3)
        settings = await storage.settings.reset("alice")
        assert settings["num_blocks"] == 10


# ── Transactions ──────────────────────────────────────────────────────────

class TestTransactionRepo:

    async def test_record_and_list(self, storage):
        await storage.transactions.record("alice", "automation_setup", "sig1", sol_amount=0.5)
        await storage.transactions.record("alice", "deploy", "sig2", sol_amount=0.01, round_id=10)
        await storage.transactions.record("bob", "deploy", "sig3", sol_amount=0.01, round_id=10)

        txs = await storage.transactions.list_for_user("alice")
        assert [t["signature"] for t in txs] == ["sig2", "sig1"]
        assert txs[0]["round_id"] == 10
        assert txs[0]["status"] == "success"
        assert len(await storage.transactions.list_all()) == 3
        assert len(await storage.transactions.list_all(limit=2)) == 2

    async def test_claim_records_orb_amount(self, storage):
        tx = await storage.transactions.record("alice", "claim_orb", "sig1", orb_amount=15000.0)
        assert tx["orb_amount"] == 15000.0
        [row] = await storage.transactions.list_for_user("alice")
        assert row["type"] == "claim_orb"
        assert row["orb_amount"] == 15000.0
        assert row["sol_amount"] == 0.0

    async def test_type_is_constrained(self, storage):
        with pytest.raises(aiosqlite.IntegrityError):
            await storage.transactions.record("alice", "swap", "sig")


# ── Rounds ────────────────────────────────────────────────────────────────

class TestRoundRepo:

    async def test_upsert_per_user_round(self, storage):
        await storage.rounds.record("alice", 10, 6000.0, 0.01, 10)
        await storage.rounds.record("alice", 10, 6100.0, 0.02, 20)
        rounds = await storage.rounds.list_for_user("alice")
        assert len(rounds) == 1
        assert rounds[0]["motherlode"] == 6100.0
        assert rounds[0]["squares_deployed"] == 20

    async def test_stats(self, storage):
        await storage.rounds.record("alice", 10, 6000.0, 0.01, 10)
        await storage.rounds.record("alice", 11, 8000.0, 0.03, 10)
        stats = await storage.rounds.stats_for_user("alice")
        assert stats["total_rounds"] == 2
        assert stats["total_deployed"] == pytest.approx(0.04)
        assert stats["avg_deployment"] == pytest.approx(0.02)
        assert stats["avg_motherlode"] == pytest.approx(7000.0)

    async def test_stats_empty(self, storage):
        stats = await storage.rounds.stats_for_user("nobody")
        assert stats == {"total_rounds": 0, "total_deployed": 0, "avg_deployment": 0, "avg_motherlode": 0}

    async def test_list_newest_first(self, storage):
        for r in (3, 1, 2):
            await storage.rounds.record("alice", r, 1.0, 0.01, 1)
        assert [r["round_id"] for r in await storage.rounds.list_for_user("alice", limit=2)] == [3, 2]


# ── Notifications ─────────────────────────────────────────────────────────

class TestNotificationRepo:

    async def test_outbox(self, storage):
        n1 = await storage.notifications.push("alice", "automation_error", "Error", "msg1")
        n2 = await storage.notifications.push("bob", "deployed", "Deployed", "msg2")

        pending = await storage.notifications.list_pending()
        assert [n["id"] for n in pending] == [n1, n2]
        assert pending[0]["delivered"] is False

        await storage.notifications.mark_delivered([n1])
        assert [n["id"] for n in await storage.notifications.list_pending()] == [n2]
        alice = await storage.notifications.list_for_user("alice")
        assert alice[0]["delivered"] is True

    async def test_mark_delivered_empty(self, storage):
        await storage.notifications.mark_delivered([])
