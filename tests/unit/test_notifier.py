"""Tests for the Notifier outbox helpers."""

import pytest

from orbminer import notifier as n

pytestmark = pytest.mark.asyncio


class TestNotifier:

    async def test_automation_error(self, notifier, storage):
        nid = await notifier.automation_error("alice", "Insufficient balance - need at least 0.2000 SOL")
        assert nid is not None
        [row] = await storage.notifications.list_for_user("alice")
        assert row["type"] == n.AUTOMATION_ERROR
        assert row["title"] == "Automation Error"
        assert "Insufficient balance" in row["message"]
        assert row["message"].endswith("Please check your settings and balance.")
        assert row["delivered"] is False

    async def test_restart_and_deploy(self, notifier, storage):
        await notifier.automation_restarted("alice", 0.5, 50)
        await notifier.deployed("alice", 12, 0.01, "sig123")
        rows = await storage.notifications.list_for_user("alice")
        assert {r["type"] for r in rows} == {n.AUTOMATION_RESTARTED, n.DEPLOYED}
        deployed = next(r for r in rows if r["type"] == n.DEPLOYED)
        assert "round 12" in deployed["title"]
        assert "sig123" in deployed["message"]

    async def test_claimed_lists_rewards(self, notifier, storage):
        await notifier.claimed("alice", ["0.0500 SOL from mining", "12000.00 ORB from mining"])
        [row] = await storage.notifications.list_for_user("alice")
        assert row["type"] == n.CLAIMED
        assert row["title"] == "Auto-Claim Successful"
        assert row["message"] == "Claimed:\n• 0.0500 SOL from mining\n• 12000.00 ORB from mining"

    async def test_storage_failure_is_swallowed(self, notifier, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(notifier._repo, "push", broken)
        assert await notifier.automation_error("alice", "x") is None

    async def test_pending_drain(self, notifier, storage):
        await notifier.deployed("alice", 1, 0.01, "a")
        await notifier.deployed("bob", 1, 0.01, "b")
        pending = await storage.notifications.list_pending()
        assert len(pending) == 2
        await storage.notifications.mark_delivered([pending[0]["id"]])
        assert len(await storage.notifications.list_pending()) == 1
