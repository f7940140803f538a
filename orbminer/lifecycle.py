"""
lifecycle.py - Per-user automation account lifecycle.

create / close / status against one user's on-chain automation account.
Budget math is done in integer lamports:

    per_round  = sol_per_block * num_blocks
    max_budget = wallet_balance * automation_budget_percent / 100
    target     = min(max_budget // per_round, MAX_TARGET_ROUNDS)
    deposit    = target * per_round

create() and close() return an AutomationResult and never raise; the error
text is meant to be shown to the user as-is.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from orbminer import decoder, protocol
from orbminer.ledger import send_and_confirm

if TYPE_CHECKING:
    from orbminer.ledger import LedgerClient
    from orbminer.storage import TransactionRepo

logger = logging.getLogger("lifecycle")

MAX_TARGET_ROUNDS = 1000
FEE_PER_EXECUTION_SOL = 0.00001

ERR_ALREADY_EXISTS = "Automation already exists - close it first"
ERR_NOT_FOUND = "No automation account found"


@dataclass
class AutomationStatus:
    active: bool
    exists: bool = False
    balance: int = 0
    cost_per_round: int = 0
    estimated_rounds: int = 0

    def to_dict(self) -> dict:
        return {
            "active": self.active,
            "exists": self.exists,
            "balance": self.balance,
            "balance_sol": protocol.lamports_to_sol(self.balance),
            "cost_per_round": self.cost_per_round,
            "cost_per_round_sol": protocol.lamports_to_sol(self.cost_per_round),
            "estimated_rounds": self.estimated_rounds,
        }


@dataclass
class AutomationResult:
    success: bool
    signature: str = ""
    deposited_sol: float = 0.0
    returned_sol: float = 0.0
    target_rounds: int = 0
    error: str = ""

    def to_dict(self) -> dict:
        if not self.success:
            return {"success": False, "error": self.error}
        d = {"success": True, "signature": self.signature}
        if self.target_rounds:
            d["deposited_sol"] = self.deposited_sol
            d["target_rounds"] = self.target_rounds
        else:
            d["returned_sol"] = self.returned_sol
        return d


def plan_budget(wallet_lamports: int, settings: dict) -> tuple:
    """Return (per_round, target_rounds, deposit) in lamports for ``settings``."""
    per_round = protocol.sol_to_lamports(settings["sol_per_block"]) * int(settings["num_blocks"])
    if per_round <= 0:
        return per_round, 0, 0
    max_budget = int(wallet_lamports * settings["automation_budget_percent"] / 100)
    target = min(max_budget // per_round, MAX_TARGET_ROUNDS)
    return per_round, target, target * per_round


class AutomationManager:
    """Creates, closes and inspects automation accounts for custodial wallets."""

    def __init__(self, ledger: "LedgerClient", transactions: Optional["TransactionRepo"] = None):
        self.ledger = ledger
        self.transactions = transactions

    async def get_status(self, owner: Pubkey) -> AutomationStatus:
        info = await decoder.fetch_automation(self.ledger, owner)
        if info is None:
            return AutomationStatus(active=False)
        return AutomationStatus(
            active=info.remaining_balance > 0,
            exists=True,
            balance=info.remaining_balance,
            cost_per_round=info.cost_per_round,
            estimated_rounds=info.estimated_rounds,
        )

    async def create(self, wallet: Keypair, settings: dict, user_id: str = "") -> AutomationResult:
        owner = wallet.pubkey()
        label = user_id or str(owner)
        try:
            existing = await decoder.fetch_automation(self.ledger, owner)
            if existing is not None and existing.remaining_balance > 0:
                return AutomationResult(success=False, error=ERR_ALREADY_EXISTS)

            balance = await self.ledger.get_balance(owner)
            per_round, target, deposit = plan_budget(balance, settings)
            if per_round <= 0:
                return AutomationResult(success=False, error="Invalid settings - deploy amount must be positive")
            logger.info(
                "%s: wallet %.4f SOL, %.4f SOL/round, allocating %.4f SOL for %d rounds",
                label, protocol.lamports_to_sol(balance), protocol.lamports_to_sol(per_round),
                protocol.lamports_to_sol(deposit), target,
            )
            if deposit < per_round:
                return AutomationResult(
                    success=False,
                    error=f"Insufficient balance - need at least {protocol.lamports_to_sol(per_round):.4f} SOL",
                )

            ix = protocol.build_automate_instruction(
                amount_per_square=protocol.sol_to_lamports(settings["sol_per_block"]),
                deposit=deposit,
                fee_per_execution=protocol.sol_to_lamports(FEE_PER_EXECUTION_SOL),
                strategy=protocol.AutomationStrategy.RANDOM,
                square_mask=int(settings["num_blocks"]),
                owner=owner,
                executor=owner,
            )
            signature = await send_and_confirm(self.ledger, [ix], wallet)
        except Exception as e:
            logger.error("%s: failed to create automation: %s", label, e)
            return AutomationResult(success=False, error=str(e) or type(e).__name__)

        deposited = protocol.lamports_to_sol(deposit)
        logger.info("%s: created automation (%d rounds, %.4f SOL) %s", label, target, deposited, signature)
        await self._record(
            user_id, "automation_setup", signature, deposited,
            f"{target} rounds @ {protocol.lamports_to_sol(per_round):.4f} SOL/round",
        )
        return AutomationResult(success=True, signature=signature, deposited_sol=deposited, target_rounds=target)

    async def close(self, wallet: Keypair, user_id: str = "") -> AutomationResult:
        owner = wallet.pubkey()
        label = user_id or str(owner)
        try:
            info = await decoder.fetch_automation(self.ledger, owner)
            if info is None or info.remaining_balance == 0:
                return AutomationResult(success=False, error=ERR_NOT_FOUND)
            # Reported from the pre-close read; the program refunds whatever is left on-chain.
            returned = protocol.lamports_to_sol(info.remaining_balance)
            ix = protocol.build_close_automation_instruction(owner)
            signature = await send_and_confirm(self.ledger, [ix], wallet)
        except Exception as e:
            logger.error("%s: failed to close automation: %s", label, e)
            return AutomationResult(success=False, error=str(e) or type(e).__name__)

        logger.info("%s: closed automation, returned %.4f SOL %s", label, returned, signature)
        await self._record(user_id, "automation_close", signature, returned, f"returned {returned:.4f} SOL")
        return AutomationResult(success=True, signature=signature, returned_sol=returned)

    async def _record(self, user_id: str, tx_type: str, signature: str, sol_amount: float, notes: str):
        if self.transactions is None or not user_id:
            return
        try:
            await self.transactions.record(user_id, tx_type, signature, sol_amount=sol_amount, notes=notes)
        except Exception:
            logger.exception("Failed to record %s for %s", tx_type, user_id)
