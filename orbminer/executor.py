"""
executor.py - Per-round automation executor.

Polls the board every ``poll_interval_sec``. When a new round appears, every
user whose automation account still holds a balance runs through:

    threshold -> account exists -> depleted? restart -> round still open
              -> checkpoint if behind -> deploy -> record

Each user is processed in isolation: an exception or timeout only turns that
user's outcome into FAILED. Users run through a bounded worker pool (one
worker by default) with a small delay after each user; the shared
LedgerClient rate limiter caps RPC usage across workers.

An account that was re-created during a round is never deployed from in that
same round, not even by a manual trigger. The deploy waits for the next round.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from orbminer import decoder, protocol
from orbminer.errors import ChainErrorKind, LedgerError, classify_chain_error
from orbminer.ledger import send_and_confirm
from orbminer.round_detector import RoundTransitionDetector

if TYPE_CHECKING:
    from orbminer.config import Config
    from orbminer.decoder import AutomationInfo, BoardState, TreasuryState
    from orbminer.ledger import LedgerClient
    from orbminer.lifecycle import AutomationManager
    from orbminer.notifier import Notifier
    from orbminer.storage import StorageManager
    from orbminer.wallet import WalletService

logger = logging.getLogger("executor")


class ExecutionOutcome(str, enum.Enum):
    SKIPPED_BELOW_THRESHOLD = "skipped_below_threshold"
    SKIPPED_NO_ACCOUNT = "skipped_no_account"
    SKIPPED_ROUND_ENDED = "skipped_round_ended"
    SKIPPED_BACKOFF = "skipped_backoff"
    SKIPPED_RESTARTED = "skipped_restarted"
    RESTARTED = "restarted"
    DEPLOYED = "deployed"
    FAILED = "failed"


@dataclass
class UserResult:
    user_id: str
    outcome: ExecutionOutcome
    round_id: int
    signature: str = ""
    checkpoint_signature: str = ""
    error: str = ""
    error_kind: str = ""

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "outcome": self.outcome.value,
            "round_id": self.round_id,
            "signature": self.signature,
            "checkpoint_signature": self.checkpoint_signature,
            "error": self.error,
            "error_kind": self.error_kind,
        }


@dataclass
class TickReport:
    round_id: Optional[int]
    started_at: float
    finished_at: float = 0.0
    results: List[UserResult] = field(default_factory=list)
    skipped_reason: str = ""

    @property
    def executed(self) -> bool:
        return not self.skipped_reason

    def count(self, outcome: ExecutionOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def to_dict(self) -> dict:
        return {
            "round_id": self.round_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "executed": self.executed,
            "skipped_reason": self.skipped_reason,
            "summary": {o.value: self.count(o) for o in ExecutionOutcome if self.count(o)},
            "results": [r.to_dict() for r in self.results],
        }


class AutomationExecutor:
    """Round-driven scheduler for every user's automated deploys."""

    def __init__(
        self,
        ledger: "LedgerClient",
        storage: "StorageManager",
        wallets: "WalletService",
        lifecycle: "AutomationManager",
        notifier: Optional["Notifier"] = None,
        poll_interval_sec: float = 15.0,
        user_delay_sec: float = 1.0,
        settle_delay_sec: float = 2.0,
        checkpoint_delay_sec: float = 2.0,
        user_timeout_sec: float = 90.0,
        max_workers: int = 1,
        restart_backoff_rounds: int = 3,
    ):
        self.ledger = ledger
        self.storage = storage
        self.wallets = wallets
        self.lifecycle = lifecycle
        self.notifier = notifier
        self.poll_interval_sec = poll_interval_sec
        self.user_delay_sec = user_delay_sec
        self.settle_delay_sec = settle_delay_sec
        self.checkpoint_delay_sec = checkpoint_delay_sec
        self.user_timeout_sec = user_timeout_sec
        self.max_workers = max(1, max_workers)
        self.restart_backoff_rounds = restart_backoff_rounds

        self.detector = RoundTransitionDetector()
        self._tick_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._running = False
        # user_id -> last round in which auto-restart stays suspended
        self._restart_backoff: Dict[str, int] = {}
        # user_id -> round in which the automation account was last re-created
        self._restarted_in: Dict[str, int] = {}
        self._ticks = 0
        self._last_report: Optional[TickReport] = None

    @classmethod
    def from_config(cls, config: "Config", ledger, storage, wallets, lifecycle, notifier=None) -> "AutomationExecutor":
        return cls(
            ledger, storage, wallets, lifecycle, notifier,
            poll_interval_sec=config.poll_interval_sec,
            user_delay_sec=config.user_delay_sec,
            settle_delay_sec=config.settle_delay_sec,
            checkpoint_delay_sec=config.checkpoint_delay_sec,
            user_timeout_sec=config.user_timeout_sec,
            max_workers=config.max_workers,
            restart_backoff_rounds=config.restart_backoff_rounds,
        )

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the polling loop. The first tick runs immediately."""
        if self._running:
            logger.warning("Executor already running")
            return
        self._running = True
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Automation executor started (interval: %.0fs, workers: %d)",
            self.poll_interval_sec, self.max_workers,
        )

    async def stop(self):
        """Stop polling. A tick already in flight runs to completion."""
        if not self._running:
            return
        self._running = False
        if self._wake is not None:
            self._wake.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Automation executor stopped")

    async def _run(self):
        while self._running:
            try:
                await self.tick()
            except Exception:
                logger.exception("Executor tick failed")
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval_sec)
            except asyncio.TimeoutError:
                pass

    def status(self) -> dict:
        report = self._last_report
        return {
            "running": self._running,
            "in_progress": self._tick_lock.locked(),
            "last_round": self.detector.last_round_id,
            "last_tick_at": report.finished_at if report else None,
            "ticks": self._ticks,
            "backoff": dict(self._restart_backoff),
            "last_report": report.to_dict() if report else None,
        }

    async def trigger(self) -> TickReport:
        """Run a tick now for the current round, new or not."""
        logger.info("Manual trigger")
        return await self.tick(force=True)

    # -------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------

    async def tick(self, force: bool = False) -> TickReport:
        if self._tick_lock.locked():
            logger.debug("Tick already in progress, skipping")
            return TickReport(
                round_id=self.detector.last_round_id, started_at=time.time(),
                finished_at=time.time(), skipped_reason="in_progress",
            )
        async with self._tick_lock:
            self._ticks += 1
            report = await self._tick(force)
            report.finished_at = time.time()
            if report.executed:
                self._last_report = report
                logger.info(
                    "Round %d: %d user(s) processed, %d deployed, %d restarted, %d failed (%.1fs)",
                    report.round_id, len(report.results),
                    report.count(ExecutionOutcome.DEPLOYED),
                    report.count(ExecutionOutcome.RESTARTED),
                    report.count(ExecutionOutcome.FAILED),
                    report.finished_at - report.started_at,
                )
            return report

    async def _tick(self, force: bool) -> TickReport:
        started = time.time()
        previous_round = self.detector.last_round_id
        board, is_new = await self.detector.poll(self.ledger)
        if not is_new and not force:
            return TickReport(round_id=board.round_id, started_at=started, skipped_reason="no_new_round")

        try:
            treasury = await decoder.fetch_treasury(self.ledger)
            users = await self._eligible_users()
        except (LedgerError, LookupError) as e:
            self.detector.rollback(previous_round)
            logger.warning("Round %d: chain unavailable, will retry: %s", board.round_id, e)
            return TickReport(round_id=board.round_id, started_at=started, skipped_reason="chain_unavailable")
        except Exception:
            self.detector.rollback(previous_round)
            raise

        self._prune_round_state(board.round_id)

        logger.info(
            "Round %d: motherlode %.2f ORB, %d user(s) with active automation",
            board.round_id, treasury.motherlode_orb, len(users),
        )
        results = await self._run_users(users, board, treasury)
        return TickReport(round_id=board.round_id, started_at=started, results=results)

    def _prune_round_state(self, round_id: int):
        for user_id, until in list(self._restart_backoff.items()):
            if until < round_id:
                del self._restart_backoff[user_id]
        for user_id, restarted in list(self._restarted_in.items()):
            if restarted < round_id:
                del self._restarted_in[user_id]

    async def _eligible_users(self) -> List[dict]:
        """Users with a known wallet whose automation account has a balance."""
        eligible = []
        for user in await self.storage.users.list_with_wallet():
            try:
                owner = Pubkey.from_string(user["public_key"])
            except ValueError:
                logger.warning("User %s has an invalid public key: %s", user["user_id"], user["public_key"])
                continue
            try:
                info = await decoder.fetch_automation(self.ledger, owner)
            except LedgerError as e:
                logger.warning("User %s: automation balance check failed: %s", user["user_id"], e)
                continue
            if info is not None and info.remaining_balance > 0:
                eligible.append(user)
        return eligible

    async def _run_users(self, users: List[dict], board: "BoardState", treasury: "TreasuryState") -> List[UserResult]:
        pool = asyncio.Semaphore(self.max_workers)

        async def worker(user: dict) -> UserResult:
            async with pool:
                result = await self._process_isolated(user, board, treasury)
                if self.user_delay_sec:
                    await asyncio.sleep(self.user_delay_sec)
                return result

        return list(await asyncio.gather(*(worker(u) for u in users)))

    async def _process_isolated(self, user: dict, board: "BoardState", treasury: "TreasuryState") -> UserResult:
        user_id = user["user_id"]
        try:
            return await asyncio.wait_for(
                self.process_user(user_id, user["public_key"], board, treasury),
                timeout=self.user_timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.error("User %s: timed out after %.0fs", user_id, self.user_timeout_sec)
            return UserResult(
                user_id, ExecutionOutcome.FAILED, board.round_id,
                error=f"timed out after {self.user_timeout_sec:.0f}s",
                error_kind=ChainErrorKind.TIMEOUT.value,
            )
        except Exception as e:
            logger.exception("User %s: automation failed", user_id)
            return UserResult(
                user_id, ExecutionOutcome.FAILED, board.round_id,
                error=str(e) or type(e).__name__,
                error_kind=classify_chain_error(e).value,
            )

    # -------------------------------------------------------------------
    # Per-user sequence
    # -------------------------------------------------------------------

    async def process_user(
        self, user_id: str, public_key: str, board: "BoardState", treasury: "TreasuryState",
    ) -> UserResult:
        round_id = board.round_id
        if self._restarted_in.get(user_id) == round_id:
            logger.info("User %s: automation re-created in round %d, deploy waits for the next round", user_id, round_id)
            return UserResult(user_id, ExecutionOutcome.SKIPPED_RESTARTED, round_id)

        settings = await self.storage.settings.get(user_id)

        if treasury.motherlode_orb < settings["motherload_threshold"]:
            logger.debug(
                "User %s: motherlode %.2f ORB below threshold %.2f",
                user_id, treasury.motherlode_orb, settings["motherload_threshold"],
            )
            return UserResult(user_id, ExecutionOutcome.SKIPPED_BELOW_THRESHOLD, round_id)

        owner = Pubkey.from_string(public_key)
        info = await decoder.fetch_automation(self.ledger, owner)
        if info is None:
            logger.info("User %s: no automation account", user_id)
            return UserResult(user_id, ExecutionOutcome.SKIPPED_NO_ACCOUNT, round_id)

        wallet = await self.wallets.resolve_signing_key(user_id)
        if wallet is None:
            logger.warning("User %s: no usable signing key", user_id)
            return UserResult(user_id, ExecutionOutcome.FAILED, round_id, error="No signing key")

        if info.remaining_balance == 0 or info.remaining_balance < info.cost_per_round:
            return await self._restart(user_id, wallet, info, settings, round_id)

        slot = await self.ledger.get_slot()
        if slot >= board.end_slot:
            logger.info("User %s: round %d ended (slot %d >= %d)", user_id, round_id, slot, board.end_slot)
            return UserResult(user_id, ExecutionOutcome.SKIPPED_ROUND_ENDED, round_id)

        result = UserResult(user_id, ExecutionOutcome.FAILED, round_id)
        miner = await decoder.fetch_miner(self.ledger, owner)
        if miner is not None and miner.checkpoint_id < round_id:
            result.checkpoint_signature = await self._checkpoint(user_id, wallet, miner.round_id)

        try:
            signature = await send_and_confirm(
                self.ledger, protocol.build_execute_automation_instructions(owner, owner, round_id), wallet,
            )
        except Exception as e:
            kind = classify_chain_error(e)
            self._log_deploy_failure(user_id, round_id, kind, e)
            result.error = str(e) or type(e).__name__
            result.error_kind = kind.value
            return result

        sol = protocol.lamports_to_sol(info.cost_per_round)
        remaining = (info.remaining_balance - info.cost_per_round) // info.cost_per_round if info.cost_per_round else 0
        logger.info(
            "User %s: deployed %.4f SOL in round %d, %d round(s) left %s",
            user_id, sol, round_id, remaining, signature,
        )
        result.outcome = ExecutionOutcome.DEPLOYED
        result.signature = signature
        await self._record_deploy(user_id, round_id, signature, sol, info, treasury)
        if self.notifier is not None:
            await self.notifier.deployed(user_id, round_id, sol, signature)
        return result

    async def _checkpoint(self, user_id: str, wallet: Keypair, miner_round_id: int) -> str:
        owner = wallet.pubkey()
        logger.info("User %s: checkpointing round %d", user_id, miner_round_id)
        try:
            signature = await send_and_confirm(
                self.ledger, [protocol.build_checkpoint_instruction(owner, owner, miner_round_id)], wallet,
            )
        except Exception as e:
            # Deploy is still attempted; the program rejects it if the checkpoint was required.
            logger.warning("User %s: checkpoint failed: %s", user_id, e)
            return ""
        logger.info("User %s: checkpoint %s", user_id, signature)
        await asyncio.sleep(self.checkpoint_delay_sec)
        return signature

    async def _restart(
        self, user_id: str, wallet: Keypair, info: "AutomationInfo", settings: dict, round_id: int,
    ) -> UserResult:
        suspended_until = self._restart_backoff.get(user_id)
        if suspended_until is not None and round_id <= suspended_until:
            logger.info("User %s: auto-restart suspended until after round %d", user_id, suspended_until)
            return UserResult(user_id, ExecutionOutcome.SKIPPED_BACKOFF, round_id)

        logger.info(
            "User %s: automation depleted (%.4f SOL left, %.4f SOL/round), restarting",
            user_id, protocol.lamports_to_sol(info.remaining_balance), protocol.lamports_to_sol(info.cost_per_round),
        )
        closed = await self.lifecycle.close(wallet, user_id)
        if closed.success:
            logger.info("User %s: closed depleted automation, returned %.4f SOL", user_id, closed.returned_sol)
        else:
            logger.info("User %s: close skipped: %s", user_id, closed.error)

        await asyncio.sleep(self.settle_delay_sec)

        created = await self.lifecycle.create(wallet, settings, user_id)
        if not created.success:
            logger.warning("User %s: auto-restart failed: %s", user_id, created.error)
            if self.restart_backoff_rounds > 0:
                self._restart_backoff[user_id] = round_id + self.restart_backoff_rounds
            if self.notifier is not None:
                await self.notifier.automation_error(user_id, created.error)
            return UserResult(
                user_id, ExecutionOutcome.FAILED, round_id,
                error=created.error, error_kind=classify_chain_error(created.error).value,
            )

        self._restart_backoff.pop(user_id, None)
        self._restarted_in[user_id] = round_id
        logger.info(
            "User %s: restarted automation, %d rounds @ %.4f SOL %s (deploy resumes next round)",
            user_id, created.target_rounds, created.deposited_sol, created.signature,
        )
        if self.notifier is not None:
            await self.notifier.automation_restarted(user_id, created.deposited_sol, created.target_rounds)
        return UserResult(user_id, ExecutionOutcome.RESTARTED, round_id, signature=created.signature)

    @staticmethod
    def _log_deploy_failure(user_id: str, round_id: int, kind: ChainErrorKind, error: Exception):
        if kind == ChainErrorKind.CHECKPOINT_REQUIRED:
            logger.error("User %s: deploy rejected, miner needs checkpoint: %s", user_id, error)
        elif kind == ChainErrorKind.ALREADY_DEPLOYED:
            logger.info("User %s: already deployed in round %d", user_id, round_id)
        elif kind == ChainErrorKind.INSUFFICIENT_BALANCE:
            logger.warning("User %s: insufficient balance to deploy: %s", user_id, error)
        else:
            logger.error("User %s: deploy failed (%s): %s", user_id, kind.value, error)

    async def _record_deploy(
        self, user_id: str, round_id: int, signature: str, sol: float,
        info: "AutomationInfo", treasury: "TreasuryState",
    ):
        try:
            await self.storage.transactions.record(
                user_id, "deploy", signature, sol_amount=sol, round_id=round_id,
                notes=f"{info.unit_mask} squares @ {protocol.lamports_to_sol(info.deposit_per_unit):.4f} SOL",
            )
        except Exception:
            logger.exception("User %s: failed to record deploy transaction", user_id)
        try:
            await self.storage.rounds.record(
                user_id, round_id, treasury.motherlode_orb, sol, info.unit_mask,
            )
        except Exception:
            logger.exception("User %s: failed to record round participation", user_id)
