"""
test_automation_flow.py - Multi-round automation scenarios.

Drives the executor round by round against the chain simulator: steady
deploys with checkpoints, depletion and auto-restart, restart backoff after a
failed refund, and per-user isolation when several users share a round.
"""

import pytest
from solders.pubkey import Pubkey

from orbminer.errors import LedgerError
from orbminer.executor import ExecutionOutcome
from orbminer.protocol import sol_to_lamports

pytestmark = pytest.mark.asyncio


def _outcomes(report) -> dict:
    return {r.user_id: r.outcome for r in report.results}


async def _next_round(server, chain, motherlode=None):
    chain.advance_round(motherlode=motherlode)
    return await server.executor.tick()


class TestSteadyState:

    async def test_deploys_every_round(self, server, chain, client, register):
        pk = Pubkey.from_string(register("alice", motherload_threshold=0, automation_budget_percent=5))
        assert client.post("/api/users/alice/automation").json()["target_rounds"] == 5

        report = await server.executor.tick()
        assert _outcomes(report) == {"alice": ExecutionOutcome.DEPLOYED}
        for expected_round in (11, 12):
            report = await _next_round(server, chain)
            assert report.round_id == expected_round
            assert _outcomes(report) == {"alice": ExecutionOutcome.DEPLOYED}
            assert report.results[0].checkpoint_signature

        # Same round again: nothing to do.
        assert (await server.executor.tick()).skipped_reason == "no_new_round"

        assert chain.get_automation(pk).balance == sol_to_lamports(0.02)
        miner = chain.get_miner(pk)
        assert miner.round_id == 12
        assert miner.checkpoint_id == 11

        stats = await server.storage.rounds.stats_for_user("alice")
        assert stats["total_rounds"] == 3
        assert stats["total_deployed"] == pytest.approx(0.03)

    async def test_threshold_gates_rounds(self, server, chain, client, register):
        register("alice", motherload_threshold=5000, automation_budget_percent=5)
        assert client.post("/api/users/alice/automation").status_code == 200

        report = await server.executor.tick()
        assert _outcomes(report) == {"alice": ExecutionOutcome.DEPLOYED}

        report = await _next_round(server, chain, motherlode=sol_to_lamports(1000))
        assert _outcomes(report) == {"alice": ExecutionOutcome.SKIPPED_BELOW_THRESHOLD}

        report = await _next_round(server, chain, motherlode=sol_to_lamports(6000))
        assert _outcomes(report) == {"alice": ExecutionOutcome.DEPLOYED}


class TestDepletion:

    async def test_restart_then_resume(self, server, chain, client, register):
        pk = Pubkey.from_string(register("alice", motherload_threshold=0, automation_budget_percent=5))
        assert client.post("/api/users/alice/automation").status_code == 200
        await server.executor.tick()

        # Leave less than one round's cost in the account.
        chain.get_automation(pk).balance = sol_to_lamports(0.004)

        report = await _next_round(server, chain)
        assert _outcomes(report) == {"alice": ExecutionOutcome.RESTARTED}
        kinds_this_round = [k for t in chain.transactions_for(pk) if t.round_id == 11 and t.ok for k in t.kinds]
        assert "close" in kinds_this_round
        assert "automate" in kinds_this_round
        assert "deploy" not in kinds_this_round

        auto = chain.get_automation(pk)
        assert auto.balance == sol_to_lamports(0.04)

        notes = client.get("/api/users/alice/notifications").json()
        assert notes[0]["type"] == "automation_restarted"

        report = await _next_round(server, chain)
        assert _outcomes(report) == {"alice": ExecutionOutcome.DEPLOYED}

        types = [t["type"] for t in client.get("/api/users/alice/transactions").json()]
        assert types[:3] == ["deploy", "automation_setup", "automation_close"]

    async def test_failed_restart_backs_off(self, server, chain, client, register):
        pk = Pubkey.from_string(register("alice", motherload_threshold=0, automation_budget_percent=5))
        assert client.post("/api/users/alice/automation").status_code == 200
        await server.executor.tick()
        chain.get_automation(pk).balance = sol_to_lamports(0.004)

        # Refund fails, so the account still holds lamports and create is refused.
        chain.inject_fault("send_transaction", LedgerError("Blockhash not found"))
        report = await _next_round(server, chain)
        [result] = report.results
        assert result.outcome == ExecutionOutcome.FAILED
        assert "already exists" in result.error

        notes = client.get("/api/users/alice/notifications").json()
        assert notes[0]["type"] == "automation_error"
        assert server.executor.status()["backoff"] == {"alice": 13}

        for _ in range(2):
            report = await _next_round(server, chain)
            assert _outcomes(report) == {"alice": ExecutionOutcome.SKIPPED_BACKOFF}

        report = await _next_round(server, chain)
        assert _outcomes(report) == {"alice": ExecutionOutcome.RESTARTED}
        assert server.executor.status()["backoff"] == {}


class TestManyUsers:

    async def test_users_are_isolated(self, server, chain, client, register):
        register("alice", motherload_threshold=0, automation_budget_percent=5)
        register("bob", motherload_threshold=1_000_000, automation_budget_percent=5)
        carol = Pubkey.from_string(register("carol", motherload_threshold=0, automation_budget_percent=5))
        register("dave", motherload_threshold=0)
        for user_id in ("alice", "bob", "carol"):
            assert client.post(f"/api/users/{user_id}/automation").status_code == 200

        # carol's automation is emptied by someone else between rounds
        chain.get_automation(carol).balance = 0

        report = await server.executor.tick()
        assert _outcomes(report) == {
            "alice": ExecutionOutcome.DEPLOYED,
            "bob": ExecutionOutcome.SKIPPED_BELOW_THRESHOLD,
        }
        # dave has no automation account and carol's is empty: neither is processed.
        assert report.count(ExecutionOutcome.DEPLOYED) == 1
