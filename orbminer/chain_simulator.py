"""
chain_simulator.py - In-memory ORB mining chain for offline runs and tests.

Implements the same async surface as LedgerClient:
 - get_account_info(address)      -> encoded board/treasury/miner/automation bytes
 - get_slot() / get_balance(pubkey) / get_latest_blockhash()
 - send_transaction(ixs, signer)  -> executes automate/close/checkpoint/deploy/claims
 - confirm_transaction(signature) -> bool

Program checks mirror the real program's failure text so error
classification sees the same strings it sees in production:
 - deploy into a later round before checkpointing -> "Miner not checkpointed"
 - second deploy in one round                      -> "AlreadyDeployed"
 - deposit or deploy above available funds         -> "insufficient ..."

Tests can inject faults per method, add latency, and inspect every
submitted transaction.

Usage (integrated into the automation server):
    chain = ChainSimulator()
    chain.register_routes(fastapi_app)
"""

import asyncio
import copy
import itertools
import logging
import struct
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from fastapi import HTTPException
from solders.compute_budget import ID as COMPUTE_BUDGET_ID
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from orbminer import decoder, protocol
from orbminer.errors import LedgerError

logger = logging.getLogger("chain")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ROUND_SLOTS = 150            # ~60s at 400ms slots
TX_FEE_LAMPORTS = 5000
DEFAULT_MOTHERLODE = 10_000 * protocol.LAMPORTS_PER_SOL
GENESIS_SLOT = 1000

_DEFAULT_PUBKEY = Pubkey.default()

# ---------------------------------------------------------------------------
# Account encoders (inverse of orbminer.decoder)
# ---------------------------------------------------------------------------


def _put_u64(buf: bytearray, offset: int, value: int):
    struct.pack_into("<Q", buf, offset, value)


def encode_automation(
    amount_per_square: int,
    balance: int,
    mask: int,
    executor: Optional[Pubkey] = None,
    fee: int = 0,
    strategy: int = 0,
) -> bytes:
    buf = bytearray(decoder.AUTOMATION_MIN_LEN)
    _put_u64(buf, decoder.AUTOMATION_AMOUNT_OFFSET, amount_per_square)
    _put_u64(buf, decoder.AUTOMATION_BALANCE_OFFSET, balance)
    buf[56:88] = bytes(executor or _DEFAULT_PUBKEY)
    _put_u64(buf, 88, fee)
    _put_u64(buf, 96, strategy)
    _put_u64(buf, decoder.AUTOMATION_MASK_OFFSET, mask)
    return bytes(buf)


def encode_board(round_id: int, start_slot: int, end_slot: int) -> bytes:
    buf = bytearray(decoder.BOARD_MIN_LEN)
    _put_u64(buf, decoder.BOARD_ROUND_ID_OFFSET, round_id)
    _put_u64(buf, decoder.BOARD_START_SLOT_OFFSET, start_slot)
    _put_u64(buf, decoder.BOARD_END_SLOT_OFFSET, end_slot)
    return bytes(buf)


def encode_treasury(balance: int, motherlode: int) -> bytes:
    buf = bytearray(decoder.TREASURY_MIN_LEN)
    _put_u64(buf, decoder.TREASURY_BALANCE_OFFSET, balance)
    _put_u64(buf, decoder.TREASURY_MOTHERLODE_OFFSET, motherlode)
    return bytes(buf)


def encode_miner(checkpoint_id: int, round_id: int, rewards_sol: int = 0, rewards_ore: int = 0) -> bytes:
    buf = bytearray(decoder.MINER_MIN_LEN)
    _put_u64(buf, decoder.MINER_CHECKPOINT_ID_OFFSET, checkpoint_id)
    _put_u64(buf, decoder.MINER_REWARDS_SOL_OFFSET, rewards_sol)
    _put_u64(buf, decoder.MINER_REWARDS_ORE_OFFSET, rewards_ore)
    _put_u64(buf, decoder.MINER_ROUND_ID_OFFSET, round_id)
    return bytes(buf)


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass
class SimAutomation:
    owner: str
    amount_per_square: int
    balance: int
    mask: int
    fee: int = 0
    strategy: int = 0
    executor: str = ""


@dataclass
class SimMiner:
    owner: str
    checkpoint_id: int = 0
    round_id: int = 0
    rewards_sol: int = 0
    rewards_ore: int = 0


@dataclass
class SentTransaction:
    signature: str
    signer: str
    kinds: List[str]
    owners: List[str]
    slot: int
    round_id: int
    ok: bool = True
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "signer": self.signer,
            "kinds": list(self.kinds),
            "owners": list(self.owners),
            "slot": self.slot,
            "round_id": self.round_id,
            "ok": self.ok,
            "error": self.error,
        }


class ProgramError(Exception):
    """Instruction rejected by the simulated program."""


# ---------------------------------------------------------------------------
# Chain Simulator
# ---------------------------------------------------------------------------


class ChainSimulator:
    """Mock ORB mining chain exposing the ledger client interface."""

    def __init__(
        self,
        round_id: int = 1,
        motherlode: int = DEFAULT_MOTHERLODE,
        round_slots: int = ROUND_SLOTS,
        slot: int = GENESIS_SLOT,
    ):
        self.slot = slot
        self.round_slots = round_slots
        self.round_id = round_id
        self.start_slot = slot
        self.end_slot = slot + round_slots
        self.motherlode = motherlode
        self.treasury_balance = 0

        self._balances: Dict[str, int] = {}
        self._orb_balances: Dict[str, int] = {}
        self._automations: Dict[str, SimAutomation] = {}  # automation pda -> account
        self._miners: Dict[str, SimMiner] = {}            # miner pda -> account
        self._signatures: Dict[str, bool] = {}
        self._blockhash = Hash.new_unique()
        self._nonce = itertools.count(1)

        self.transactions: List[SentTransaction] = []
        self.calls: List[tuple] = []
        self._faults: Dict[str, List[Exception]] = {}
        self._dropped_confirmations = 0
        self.delays: Dict[str, float] = {}

        self._board_key = str(protocol.board_pda())
        self._treasury_key = str(protocol.treasury_pda())

        logger.info(
            "Chain simulator initialized (round=%d, slot=%d, round_slots=%d)",
            self.round_id, self.slot, self.round_slots,
        )

    # -------------------------------------------------------------------
    # Test / operator controls
    # -------------------------------------------------------------------

    def fund(self, pubkey: Pubkey, lamports: int):
        key = str(pubkey)
        self._balances[key] = self._balances.get(key, 0) + lamports

    def set_automation(
        self, owner: Pubkey, amount_per_square: int, balance: int, mask: int,
    ):
        self._automations[str(protocol.automation_pda(owner))] = SimAutomation(
            owner=str(owner), amount_per_square=amount_per_square, balance=balance, mask=mask,
            executor=str(owner),
        )

    def set_miner(self, owner: Pubkey, checkpoint_id: int, round_id: int):
        self._miners[str(protocol.miner_pda(owner))] = SimMiner(
            owner=str(owner), checkpoint_id=checkpoint_id, round_id=round_id,
        )

    def credit_rewards(self, owner: Pubkey, rewards_sol: int = 0, rewards_ore: int = 0):
        """Add unclaimed mining rewards to ``owner``'s miner account."""
        key = str(protocol.miner_pda(owner))
        miner = self._miners.setdefault(key, SimMiner(owner=str(owner)))
        miner.rewards_sol += rewards_sol
        miner.rewards_ore += rewards_ore

    def orb_balance(self, owner: Pubkey) -> int:
        return self._orb_balances.get(str(owner), 0)

    def get_automation(self, owner: Pubkey) -> Optional[SimAutomation]:
        return self._automations.get(str(protocol.automation_pda(owner)))

    def get_miner(self, owner: Pubkey) -> Optional[SimMiner]:
        return self._miners.get(str(protocol.miner_pda(owner)))

    def advance_slots(self, count: int = 1):
        self.slot += count

    def advance_round(self, motherlode: Optional[int] = None):
        """Close the current round and open the next one at the current slot."""
        self.slot = max(self.slot, self.end_slot)
        self.round_id += 1
        self.start_slot = self.slot
        self.end_slot = self.slot + self.round_slots
        self._blockhash = Hash.new_unique()
        if motherlode is not None:
            self.motherlode = motherlode
        logger.info("Round %d started (slots %d-%d)", self.round_id, self.start_slot, self.end_slot)

    def inject_fault(self, method: str, exc: Exception, times: int = 1):
        """Make the next ``times`` calls to ``method`` raise ``exc``."""
        self._faults.setdefault(method, []).extend([exc] * times)

    def drop_confirmations(self, count: int = 1):
        """Make the next ``count`` confirmations report failure."""
        self._dropped_confirmations += count

    def transactions_for(self, owner: Pubkey) -> List[SentTransaction]:
        key = str(owner)
        return [t for t in self.transactions if key in t.owners or t.signer == key]

    def kinds_for(self, owner: Pubkey) -> List[str]:
        kinds: List[str] = []
        for t in self.transactions_for(owner):
            if t.ok:
                kinds.extend(t.kinds)
        return kinds

    def method_calls(self, method: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == method]

    # -------------------------------------------------------------------
    # Ledger client interface
    # -------------------------------------------------------------------

    async def _enter(self, method: str, *args):
        self.calls.append((method,) + args)
        delay = self.delays.get(method, 0.0)
        if delay:
            await asyncio.sleep(delay)
        pending = self._faults.get(method)
        if pending:
            raise pending.pop(0)

    async def get_account_info(self, address: Pubkey) -> Optional[bytes]:
        key = str(address)
        await self._enter("get_account_info", key)
        if key == self._board_key:
            return encode_board(self.round_id, self.start_slot, self.end_slot)
        if key == self._treasury_key:
            return encode_treasury(self.treasury_balance, self.motherlode)
        auto = self._automations.get(key)
        if auto is not None:
            return encode_automation(
                auto.amount_per_square, auto.balance, auto.mask,
                executor=Pubkey.from_string(auto.executor) if auto.executor else None,
                fee=auto.fee, strategy=auto.strategy,
            )
        miner = self._miners.get(key)
        if miner is not None:
            return encode_miner(miner.checkpoint_id, miner.round_id, miner.rewards_sol, miner.rewards_ore)
        return None

    async def get_slot(self) -> int:
        await self._enter("get_slot")
        return self.slot

    async def get_balance(self, pubkey: Pubkey) -> int:
        await self._enter("get_balance", str(pubkey))
        return self._balances.get(str(pubkey), 0)

    async def get_latest_blockhash(self) -> Hash:
        await self._enter("get_latest_blockhash")
        return self._blockhash

    async def send_transaction(self, instructions: Sequence[Instruction], signer: Keypair) -> str:
        signer_key = str(signer.pubkey())
        kinds = [self._kind(ix) for ix in instructions]
        await self._enter("send_transaction", tuple(kinds), signer_key)

        signature = str(signer.sign_message(f"{signer_key}:{next(self._nonce)}".encode()))
        record = SentTransaction(
            signature=signature, signer=signer_key, kinds=kinds,
            owners=[self._owner_of(ix) for ix in instructions if ix.program_id == protocol.ORB_PROGRAM_ID],
            slot=self.slot, round_id=self.round_id,
        )
        self.transactions.append(record)

        snapshot = (
            copy.deepcopy(self._balances),
            copy.deepcopy(self._automations),
            copy.deepcopy(self._miners),
            copy.deepcopy(self._orb_balances),
        )
        try:
            self._charge(signer_key, TX_FEE_LAMPORTS, "insufficient funds for fee")
            for ix in instructions:
                self._execute(ix, signer_key)
        except ProgramError as e:
            self._balances, self._automations, self._miners, self._orb_balances = snapshot
            record.ok = False
            record.error = str(e)
            logger.info("Transaction rejected: signer=%s kinds=%s error=%s", signer_key[:8], kinds, e)
            raise LedgerError(
                f"Transaction simulation failed: {e}",
                logs=[f"Program {protocol.ORB_PROGRAM_ID} failed: {e}"],
            )

        self._signatures[signature] = True
        logger.info("Transaction %s..%s: signer=%s kinds=%s", signature[:8], signature[-4:], signer_key[:8], kinds)
        return signature

    async def confirm_transaction(self, signature: str) -> bool:
        await self._enter("confirm_transaction", signature)
        if self._dropped_confirmations > 0:
            self._dropped_confirmations -= 1
            return False
        return self._signatures.get(signature, False)

    async def close(self):
        pass

    # -------------------------------------------------------------------
    # Program execution
    # -------------------------------------------------------------------

    @staticmethod
    def _kind(ix: Instruction) -> str:
        if ix.program_id == COMPUTE_BUDGET_ID:
            return "compute_budget"
        if ix.program_id != protocol.ORB_PROGRAM_ID or not ix.data:
            return "unknown"
        disc = ix.data[0]
        if disc == protocol.AUTOMATE:
            if ix.accounts[2].pubkey == _DEFAULT_PUBKEY:
                return "close"
            return "automate"
        if disc == protocol.CHECKPOINT:
            return "checkpoint"
        if disc == protocol.CLAIM_SOL:
            return "claim_sol"
        if disc == protocol.CLAIM_ORE:
            return "claim_ore"
        if disc == protocol.DEPLOY:
            return "deploy"
        return "unknown"

    def _owner_of(self, ix: Instruction) -> str:
        kind = self._kind(ix)
        if kind in ("automate", "close", "claim_sol", "claim_ore"):
            return str(ix.accounts[0].pubkey)
        if kind == "deploy":
            return str(ix.accounts[1].pubkey)
        if kind == "checkpoint":
            miner = self._miners.get(str(ix.accounts[2].pubkey))
            return miner.owner if miner else ""
        return ""

    def _charge(self, key: str, amount: int, message: str):
        if self._balances.get(key, 0) < amount:
            raise ProgramError(message)
        self._balances[key] -= amount

    def _execute(self, ix: Instruction, signer_key: str):
        kind = self._kind(ix)
        if kind == "compute_budget":
            return
        if kind == "automate":
            self._exec_automate(ix)
        elif kind == "close":
            self._exec_close(ix)
        elif kind == "checkpoint":
            self._exec_checkpoint(ix)
        elif kind == "deploy":
            self._exec_deploy(ix)
        elif kind == "claim_sol":
            self._exec_claim_sol(ix)
        elif kind == "claim_ore":
            self._exec_claim_ore(ix)
        else:
            raise ProgramError("Invalid instruction")

    def _exec_automate(self, ix: Instruction):
        _, amount, deposit, fee, mask, strategy = struct.unpack("<BQQQQB", bytes(ix.data))
        owner = str(ix.accounts[0].pubkey)
        auto_key = str(ix.accounts[1].pubkey)
        existing = self._automations.get(auto_key)
        if existing is not None and existing.balance > 0:
            raise ProgramError("Automation account already in use")
        self._charge(owner, deposit, "insufficient lamports for automation deposit")
        self._automations[auto_key] = SimAutomation(
            owner=owner, amount_per_square=amount, balance=deposit, mask=mask,
            fee=fee, strategy=strategy, executor=str(ix.accounts[2].pubkey),
        )
        miner_key = str(ix.accounts[3].pubkey)
        self._miners.setdefault(miner_key, SimMiner(owner=owner))

    def _exec_close(self, ix: Instruction):
        owner = str(ix.accounts[0].pubkey)
        auto = self._automations.pop(str(ix.accounts[1].pubkey), None)
        if auto is None:
            raise ProgramError("Automation account does not exist")
        self._balances[owner] = self._balances.get(owner, 0) + auto.balance

    def _exec_checkpoint(self, ix: Instruction):
        miner = self._miners.get(str(ix.accounts[2].pubkey))
        if miner is None:
            raise ProgramError("Miner account does not exist")
        miner.checkpoint_id = miner.round_id

    def _claimable_miner(self, ix: Instruction) -> SimMiner:
        miner = self._miners.get(str(ix.accounts[1].pubkey))
        if miner is None:
            raise ProgramError("Miner account does not exist")
        return miner

    def _exec_claim_sol(self, ix: Instruction):
        miner = self._claimable_miner(ix)
        owner = str(ix.accounts[0].pubkey)
        self._balances[owner] = self._balances.get(owner, 0) + miner.rewards_sol
        miner.rewards_sol = 0

    def _exec_claim_ore(self, ix: Instruction):
        miner = self._claimable_miner(ix)
        owner = str(ix.accounts[0].pubkey)
        self._orb_balances[owner] = self._orb_balances.get(owner, 0) + miner.rewards_ore
        miner.rewards_ore = 0

    def _exec_deploy(self, ix: Instruction):
        auto = self._automations.get(str(ix.accounts[2].pubkey))
        if auto is None:
            raise ProgramError("Automation account does not exist")
        if str(ix.accounts[5].pubkey) != str(protocol.round_pda(self.round_id)):
            raise ProgramError("Round account mismatch")
        if self.slot >= self.end_slot:
            raise ProgramError("Round has ended")
        miner_key = str(ix.accounts[4].pubkey)
        miner = self._miners.setdefault(miner_key, SimMiner(owner=auto.owner))
        if miner.round_id == self.round_id:
            raise ProgramError("AlreadyDeployed")
        if miner.round_id > miner.checkpoint_id:
            raise ProgramError("Miner not checkpointed")
        cost = auto.amount_per_square * auto.mask
        if auto.balance < cost:
            raise ProgramError("insufficient automation balance")
        auto.balance -= cost
        miner.round_id = self.round_id
        self.treasury_balance += cost

    # -------------------------------------------------------------------
    # Stats / FastAPI routes
    # -------------------------------------------------------------------

    def get_stats(self) -> dict:
        return {
            "round_id": self.round_id,
            "slot": self.slot,
            "start_slot": self.start_slot,
            "end_slot": self.end_slot,
            "motherlode": self.motherlode,
            "automations": len(self._automations),
            "miners": len(self._miners),
            "transactions": len(self.transactions),
            "failed_transactions": sum(1 for t in self.transactions if not t.ok),
        }

    def register_routes(self, app):
        """Register simulator inspection endpoints on an existing FastAPI app."""

        @app.get("/chain/stats")
        async def chain_stats():
            return self.get_stats()

        @app.get("/chain/transactions")
        async def chain_transactions(limit: int = 100):
            return [t.to_dict() for t in self.transactions[-limit:]]

        @app.post("/chain/advance")
        async def chain_advance(motherlode: Optional[int] = None):
            self.advance_round(motherlode=motherlode)
            return self.get_stats()

        @app.post("/chain/fund/{pubkey}")
        async def chain_fund(pubkey: str, sol: float = 1.0):
            try:
                key = Pubkey.from_string(pubkey)
            except ValueError:
                raise HTTPException(status_code=400, detail="Invalid public key")
            self.fund(key, protocol.sol_to_lamports(sol))
            return {"pubkey": pubkey, "balance": self._balances[pubkey]}

        logger.info("Chain simulator routes registered on FastAPI app")
