"""
claimer.py - Threshold-gated mining reward claims.

Every ``interval_sec`` the service walks all users with a wallet, reads
their miner account and claims the SOL and ORB mining rewards that reached
the user's auto-claim thresholds (a threshold of 0 disables that claim).
It runs on its own loop beside the executor; both share the ledger client's
rate budget.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from orbminer import decoder, protocol
from orbminer.ledger import send_and_confirm

if TYPE_CHECKING:
    from orbminer.config import Config
    from orbminer.decoder import MinerState
    from orbminer.ledger import LedgerClient
    from orbminer.notifier import Notifier
    from orbminer.storage import StorageManager
    from orbminer.wallet import WalletService

logger = logging.getLogger("claimer")

DEFAULT_CLAIM_INTERVAL_SEC = 300.0


@dataclass
class ClaimResult:
    success: bool
    asset: str
    amount: float = 0.0
    signature: str = ""
    error: str = ""

    def to_dict(self) -> dict:
        if not self.success:
            return {"success": False, "asset": self.asset, "error": self.error}
        return {
            "success": True,
            "asset": self.asset,
            "amount": self.amount,
            "signature": self.signature,
        }


class AutoClaimService:
    """Periodic SOL/ORB reward claims for every user with a wallet."""

    def __init__(
        self,
        ledger: "LedgerClient",
        storage: "StorageManager",
        wallets: "WalletService",
        notifier: Optional["Notifier"] = None,
        interval_sec: float = DEFAULT_CLAIM_INTERVAL_SEC,
        user_delay_sec: float = 1.0,
    ):
        self.ledger = ledger
        self.storage = storage
        self.wallets = wallets
        self.notifier = notifier
        self.interval_sec = interval_sec
        self.user_delay_sec = user_delay_sec

        self._run_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._running = False
        self._runs = 0
        self._last_run_at: Optional[float] = None
        self._claimed = 0

    @classmethod
    def from_config(cls, config: "Config", ledger, storage, wallets, notifier=None) -> "AutoClaimService":
        return cls(
            ledger, storage, wallets, notifier,
            interval_sec=config.claim_interval_sec,
            user_delay_sec=config.user_delay_sec,
        )

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        if self._running:
            logger.warning("Auto-claim already running")
            return
        self._running = True
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info("Auto-claim started (interval: %.0fs)", self.interval_sec)

    async def stop(self):
        """Stop the loop. A pass already in flight runs to completion."""
        if not self._running:
            return
        self._running = False
        if self._wake is not None:
            self._wake.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Auto-claim stopped")

    async def _run(self):
        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Auto-claim pass failed")
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_sec)
            except asyncio.TimeoutError:
                pass

    def status(self) -> dict:
        return {
            "running": self._running,
            "in_progress": self._run_lock.locked(),
            "interval_sec": self.interval_sec,
            "runs": self._runs,
            "last_run_at": self._last_run_at,
            "claimed": self._claimed,
        }

    async def run_once(self) -> Dict[str, List[ClaimResult]]:
        """One pass over every user with a wallet. Skipped if a pass is running."""
        if self._run_lock.locked():
            logger.debug("Auto-claim pass already in progress, skipping")
            return {}
        async with self._run_lock:
            self._runs += 1
            users = await self.storage.users.list_with_wallet()
            logger.debug("Checking %d user(s) for claimable rewards", len(users))
            results: Dict[str, List[ClaimResult]] = {}
            for user in users:
                try:
                    results[user["user_id"]] = await self.process_user(user["user_id"], user["public_key"])
                except Exception:
                    logger.exception("User %s: auto-claim failed", user["user_id"])
                if self.user_delay_sec:
                    await asyncio.sleep(self.user_delay_sec)
            self._last_run_at = time.time()
            return results

    async def process_user(self, user_id: str, public_key: str) -> List[ClaimResult]:
        settings = await self.storage.settings.get(user_id)
        miner = await decoder.fetch_miner(self.ledger, Pubkey.from_string(public_key))
        if miner is None:
            return []

        rewards_sol = miner.claimable_sol
        rewards_orb = miner.claimable_orb
        want_sol = 0 < settings["auto_claim_sol_threshold"] <= rewards_sol
        want_orb = 0 < settings["auto_claim_orb_threshold"] <= rewards_orb
        if not (want_sol or want_orb):
            return []

        wallet = await self.wallets.resolve_signing_key(user_id)
        if wallet is None:
            logger.warning("User %s: no usable signing key for claims", user_id)
            return []

        results = []
        if want_sol:
            logger.info(
                "User %s: mining SOL %.4f >= threshold %.4f",
                user_id, rewards_sol, settings["auto_claim_sol_threshold"],
            )
            results.append(await self.claim_sol(wallet, user_id, miner))
        if want_orb:
            logger.info(
                "User %s: mining ORB %.2f >= threshold %.2f",
                user_id, rewards_orb, settings["auto_claim_orb_threshold"],
            )
            results.append(await self.claim_orb(wallet, user_id, miner))

        claimed = [r for r in results if r.success]
        self._claimed += len(claimed)
        if claimed and self.notifier is not None:
            await self.notifier.claimed(user_id, [
                f"{r.amount:.4f} SOL from mining" if r.asset == "sol" else f"{r.amount:.2f} ORB from mining"
                for r in claimed
            ])
        return results

    async def claim_sol(self, wallet: Keypair, user_id: str = "", miner: Optional["MinerState"] = None) -> ClaimResult:
        """Claim all SOL mining rewards. Failures come back as a result, never raised."""
        try:
            if miner is None:
                miner = await decoder.fetch_miner(self.ledger, wallet.pubkey())
            if miner is None:
                return ClaimResult(False, "sol", error="No miner account found")
            amount = miner.claimable_sol
            if miner.rewards_sol == 0:
                return ClaimResult(False, "sol", error="No SOL rewards to claim")
            signature = await send_and_confirm(
                self.ledger, [protocol.build_claim_sol_instruction(wallet.pubkey())], wallet,
            )
        except Exception as e:
            logger.warning("User %s: failed to claim SOL: %s", user_id, e)
            return ClaimResult(False, "sol", error=str(e) or type(e).__name__)

        logger.info("User %s: claimed %.4f SOL %s", user_id, amount, signature)
        await self._record(user_id, "claim_sol", signature, sol_amount=amount,
                           notes=f"Claimed {amount:.4f} SOL")
        return ClaimResult(True, "sol", amount, signature)

    async def claim_orb(self, wallet: Keypair, user_id: str = "", miner: Optional["MinerState"] = None) -> ClaimResult:
        """Claim all ORB mining rewards. Failures come back as a result, never raised."""
        try:
            if miner is None:
                miner = await decoder.fetch_miner(self.ledger, wallet.pubkey())
            if miner is None:
                return ClaimResult(False, "orb", error="No miner account found")
            amount = miner.claimable_orb
            if miner.rewards_ore == 0:
                return ClaimResult(False, "orb", error="No ORB rewards to claim")
            signature = await send_and_confirm(
                self.ledger, [protocol.build_claim_ore_instruction(wallet.pubkey())], wallet,
            )
        except Exception as e:
            logger.warning("User %s: failed to claim ORB: %s", user_id, e)
            return ClaimResult(False, "orb", error=str(e) or type(e).__name__)

        logger.info("User %s: claimed %.2f ORB %s", user_id, amount, signature)
        await self._record(user_id, "claim_orb", signature, orb_amount=amount,
                           notes=f"Claimed {amount:.2f} ORB")
        return ClaimResult(True, "orb", amount, signature)

    async def _record(self, user_id: str, tx_type: str, signature: str, **fields):
        if not user_id:
            return
        try:
            await self.storage.transactions.record(user_id, tx_type, signature, **fields)
        except Exception:
            logger.exception("User %s: failed to record %s", user_id, tx_type)
