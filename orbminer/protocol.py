"""
protocol.py - ORB mining program addresses and instruction builders.

The builders produce the binary payloads the on-chain program expects.
Callers treat them as opaque: the executor and lifecycle manager only pick
which builder to call and hand the result to the ledger client.

Automate payload (34 bytes):
    u8  discriminator (0)
    u64 amount per square
    u64 deposit
    u64 fee per execution
    u64 square mask
    u8  strategy

Closing an automation account is an Automate call with an all-zero payload
and the default executor key.
"""

import enum
import struct
from typing import List

from solders.compute_budget import set_compute_unit_limit
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

ORB_PROGRAM_ID = Pubkey.from_string("boreXQWsKpsJz5RR9BMtN8Vk4ndAk23sutj8spWYhwk")

LAMPORTS_PER_SOL = 1_000_000_000

# Instruction discriminators
AUTOMATE = 0x00
CHECKPOINT = 0x02
CLAIM_SOL = 0x03
CLAIM_ORE = 0x04
DEPLOY = 0x06

AUTOMATE_DATA_LEN = 34
DEPLOY_COMPUTE_UNITS = 1_400_000

BOARD_SEED = b"board"
TREASURY_SEED = b"treasury"
MINER_SEED = b"miner"
AUTOMATION_SEED = b"automation"
ROUND_SEED = b"round"


class AutomationStrategy(enum.IntEnum):
    RANDOM = 0
    PREFERRED = 1


# ---------------------------------------------------------------------------
# Unit conversion
# ---------------------------------------------------------------------------

def sol_to_lamports(sol: float) -> int:
    return int(round(sol * LAMPORTS_PER_SOL))


def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


# ---------------------------------------------------------------------------
# PDAs
# ---------------------------------------------------------------------------

def board_pda() -> Pubkey:
    return Pubkey.find_program_address([BOARD_SEED], ORB_PROGRAM_ID)[0]


def treasury_pda() -> Pubkey:
    return Pubkey.find_program_address([TREASURY_SEED], ORB_PROGRAM_ID)[0]


def miner_pda(owner: Pubkey) -> Pubkey:
    return Pubkey.find_program_address([MINER_SEED, bytes(owner)], ORB_PROGRAM_ID)[0]


def automation_pda(owner: Pubkey) -> Pubkey:
    return Pubkey.find_program_address([AUTOMATION_SEED, bytes(owner)], ORB_PROGRAM_ID)[0]


def round_pda(round_id: int) -> Pubkey:
    return Pubkey.find_program_address(
        [ROUND_SEED, struct.pack("<Q", round_id)], ORB_PROGRAM_ID,
    )[0]


# ---------------------------------------------------------------------------
# Instruction builders
# ---------------------------------------------------------------------------

def _automate_data(
    amount_per_square: int,
    deposit: int,
    fee_per_execution: int,
    square_mask: int,
    strategy: int,
) -> bytes:
    return struct.pack(
        "<BQQQQB",
        AUTOMATE, amount_per_square, deposit, fee_per_execution, square_mask, strategy,
    )


def build_automate_instruction(
    amount_per_square: int,
    deposit: int,
    fee_per_execution: int,
    strategy: AutomationStrategy,
    square_mask: int,
    owner: Pubkey,
    executor: Pubkey,
) -> Instruction:
    """Open and fund an automation account. All amounts are in lamports."""
    accounts = [
        AccountMeta(owner, is_signer=True, is_writable=True),
        AccountMeta(automation_pda(owner), is_signer=False, is_writable=True),
        AccountMeta(executor, is_signer=False, is_writable=True),
        AccountMeta(miner_pda(owner), is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    data = _automate_data(amount_per_square, deposit, fee_per_execution, square_mask, int(strategy))
    return Instruction(ORB_PROGRAM_ID, data, accounts)


def build_close_automation_instruction(owner: Pubkey) -> Instruction:
    """Close the automation account; remaining balance returns to ``owner``."""
    accounts = [
        AccountMeta(owner, is_signer=True, is_writable=True),
        AccountMeta(automation_pda(owner), is_signer=False, is_writable=True),
        AccountMeta(Pubkey.default(), is_signer=False, is_writable=True),
        AccountMeta(miner_pda(owner), is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    data = bytes([AUTOMATE]) + bytes(AUTOMATE_DATA_LEN - 1)
    return Instruction(ORB_PROGRAM_ID, data, accounts)


def build_checkpoint_instruction(executor: Pubkey, owner: Pubkey, round_id: int) -> Instruction:
    """Settle ``owner``'s miner for the round it last deployed into."""
    accounts = [
        AccountMeta(executor, is_signer=True, is_writable=True),
        AccountMeta(board_pda(), is_signer=False, is_writable=False),
        AccountMeta(miner_pda(owner), is_signer=False, is_writable=True),
        AccountMeta(round_pda(round_id), is_signer=False, is_writable=True),
        AccountMeta(treasury_pda(), is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(ORB_PROGRAM_ID, bytes([CHECKPOINT]), accounts)


def build_claim_sol_instruction(owner: Pubkey) -> Instruction:
    """Withdraw the SOL mining rewards held on ``owner``'s miner account."""
    accounts = [
        AccountMeta(owner, is_signer=True, is_writable=True),
        AccountMeta(miner_pda(owner), is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(ORB_PROGRAM_ID, bytes([CLAIM_SOL]), accounts)


def build_claim_ore_instruction(owner: Pubkey) -> Instruction:
    """Withdraw ORB mining rewards from the treasury to ``owner``."""
    accounts = [
        AccountMeta(owner, is_signer=True, is_writable=True),
        AccountMeta(miner_pda(owner), is_signer=False, is_writable=True),
        AccountMeta(treasury_pda(), is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(ORB_PROGRAM_ID, bytes([CLAIM_ORE]), accounts)


def build_execute_automation_instructions(
    executor: Pubkey, owner: Pubkey, round_id: int,
) -> List[Instruction]:
    """Deploy from ``owner``'s automation account into ``round_id``.

    Amount and squares are zero: the program takes both from the automation
    account.
    """
    accounts = [
        AccountMeta(executor, is_signer=True, is_writable=True),
        AccountMeta(owner, is_signer=False, is_writable=True),
        AccountMeta(automation_pda(owner), is_signer=False, is_writable=True),
        AccountMeta(board_pda(), is_signer=False, is_writable=True),
        AccountMeta(miner_pda(owner), is_signer=False, is_writable=True),
        AccountMeta(round_pda(round_id), is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    data = struct.pack("<BQI", DEPLOY, 0, 0)
    return [
        set_compute_unit_limit(DEPLOY_COMPUTE_UNITS),
        Instruction(ORB_PROGRAM_ID, data, accounts),
    ]
