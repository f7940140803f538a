"""
decoder.py - Fixed-layout account decoders.

Every decoder returns None for an absent or short buffer. "No account" is a
normal answer here, never an error: callers must be able to tell "no
automation configured" apart from "automation with zero balance".
"""

import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from solders.pubkey import Pubkey

from orbminer import protocol

if TYPE_CHECKING:
    from orbminer.ledger import LedgerClient

_U64 = struct.Struct("<Q")

# Automation account
AUTOMATION_AMOUNT_OFFSET = 8
AUTOMATION_BALANCE_OFFSET = 48
AUTOMATION_MASK_OFFSET = 104
AUTOMATION_MIN_LEN = 112

# Board
BOARD_ROUND_ID_OFFSET = 8
BOARD_START_SLOT_OFFSET = 16
BOARD_END_SLOT_OFFSET = 24
BOARD_MIN_LEN = 32

# Treasury
TREASURY_BALANCE_OFFSET = 8
TREASURY_MOTHERLODE_OFFSET = 16
TREASURY_MIN_LEN = 24

# Miner
MINER_CHECKPOINT_ID_OFFSET = 448
MINER_REWARDS_SOL_OFFSET = 488
MINER_REWARDS_ORE_OFFSET = 496
MINER_ROUND_ID_OFFSET = 512
MINER_MIN_LEN = 520


def _u64(data: bytes, offset: int) -> int:
    return _U64.unpack_from(data, offset)[0]


@dataclass(frozen=True)
class AutomationInfo:
    deposit_per_unit: int
    remaining_balance: int
    unit_mask: int

    @property
    def cost_per_round(self) -> int:
        return self.deposit_per_unit * self.unit_mask

    @property
    def estimated_rounds(self) -> int:
        if self.cost_per_round <= 0:
            return 0
        return self.remaining_balance // self.cost_per_round


@dataclass(frozen=True)
class BoardState:
    round_id: int
    start_slot: int
    end_slot: int


@dataclass(frozen=True)
class TreasuryState:
    balance: int
    motherlode: int

    @property
    def motherlode_orb(self) -> float:
        return self.motherlode / protocol.LAMPORTS_PER_SOL


@dataclass(frozen=True)
class MinerState:
    checkpoint_id: int
    round_id: int
    rewards_sol: int = 0
    rewards_ore: int = 0

    @property
    def claimable_sol(self) -> float:
        return protocol.lamports_to_sol(self.rewards_sol)

    @property
    def claimable_orb(self) -> float:
        return self.rewards_ore / protocol.LAMPORTS_PER_SOL


def decode_automation(data: Optional[bytes]) -> Optional[AutomationInfo]:
    if data is None or len(data) < AUTOMATION_MIN_LEN:
        return None
    return AutomationInfo(
        deposit_per_unit=_u64(data, AUTOMATION_AMOUNT_OFFSET),
        remaining_balance=_u64(data, AUTOMATION_BALANCE_OFFSET),
        unit_mask=_u64(data, AUTOMATION_MASK_OFFSET),
    )


def decode_board(data: Optional[bytes]) -> Optional[BoardState]:
    if data is None or len(data) < BOARD_MIN_LEN:
        return None
    return BoardState(
        round_id=_u64(data, BOARD_ROUND_ID_OFFSET),
        start_slot=_u64(data, BOARD_START_SLOT_OFFSET),
        end_slot=_u64(data, BOARD_END_SLOT_OFFSET),
    )


def decode_treasury(data: Optional[bytes]) -> Optional[TreasuryState]:
    if data is None or len(data) < TREASURY_MIN_LEN:
        return None
    return TreasuryState(
        balance=_u64(data, TREASURY_BALANCE_OFFSET),
        motherlode=_u64(data, TREASURY_MOTHERLODE_OFFSET),
    )


def decode_miner(data: Optional[bytes]) -> Optional[MinerState]:
    if data is None or len(data) < MINER_MIN_LEN:
        return None
    return MinerState(
        checkpoint_id=_u64(data, MINER_CHECKPOINT_ID_OFFSET),
        round_id=_u64(data, MINER_ROUND_ID_OFFSET),
        rewards_sol=_u64(data, MINER_REWARDS_SOL_OFFSET),
        rewards_ore=_u64(data, MINER_REWARDS_ORE_OFFSET),
    )


# ---------------------------------------------------------------------------
# Fetch helpers
# ---------------------------------------------------------------------------

async def fetch_automation(ledger: "LedgerClient", owner: Pubkey) -> Optional[AutomationInfo]:
    return decode_automation(await ledger.get_account_info(protocol.automation_pda(owner)))


async def fetch_miner(ledger: "LedgerClient", owner: Pubkey) -> Optional[MinerState]:
    return decode_miner(await ledger.get_account_info(protocol.miner_pda(owner)))


async def fetch_board(ledger: "LedgerClient") -> BoardState:
    board = decode_board(await ledger.get_account_info(protocol.board_pda()))
    if board is None:
        raise LookupError("Board account not found")
    return board


async def fetch_treasury(ledger: "LedgerClient") -> TreasuryState:
    treasury = decode_treasury(await ledger.get_account_info(protocol.treasury_pda()))
    if treasury is None:
        raise LookupError("Treasury account not found")
    return treasury
