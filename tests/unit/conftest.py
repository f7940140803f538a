"""Shared fixtures for the orbminer unit tests."""

from typing import Optional

import pytest
import pytest_asyncio
from solders.keypair import Keypair

from orbminer.chain_simulator import ChainSimulator
from orbminer.claimer import AutoClaimService
from orbminer.executor import AutomationExecutor
from orbminer.lifecycle import AutomationManager
from orbminer.notifier import Notifier
from orbminer.protocol import sol_to_lamports
from orbminer.storage import StorageManager
from orbminer.wallet import WalletService


# ── Fixtures ────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def storage():
    sm = StorageManager(":memory:")
    await sm.initialize()
    yield sm
    await sm.close()


@pytest.fixture
def chain():
    """Simulated chain at round 10 with a 10,000 ORB motherlode."""
    return ChainSimulator(round_id=10)


@pytest.fixture
def wallets(storage):
    return WalletService(storage.users, WalletService.generate_encryption_key())


@pytest.fixture
def lifecycle(chain, storage):
    return AutomationManager(chain, storage.transactions)


@pytest.fixture
def notifier(storage):
    return Notifier(storage.notifications)


@pytest.fixture
def executor(chain, storage, wallets, lifecycle, notifier):
    return AutomationExecutor(
        chain, storage, wallets, lifecycle, notifier,
        poll_interval_sec=0.05,
        user_delay_sec=0,
        settle_delay_sec=0,
        checkpoint_delay_sec=0,
        user_timeout_sec=5,
        restart_backoff_rounds=3,
    )


@pytest.fixture
def claimer(chain, storage, wallets, notifier):
    return AutoClaimService(chain, storage, wallets, notifier, interval_sec=0.05, user_delay_sec=0)


@pytest.fixture
def make_user(storage, wallets, chain):
    """Factory: register a user with a funded wallet and an automation account.

    ``automation`` is (sol_per_square, squares, balance_sol), or None for no
    account. The miner is checkpointed up to the previous round unless
    ``checkpoint_id`` says otherwise.
    """

    async def _make(
        user_id: str,
        wallet_sol: float = 1.0,
        automation: Optional[tuple] = (0.001, 10, 0.05),
        checkpoint_id: Optional[int] = None,
        threshold: float = 0.0,
    ) -> Keypair:
        keypair, _ = await wallets.generate(user_id)
        chain.fund(keypair.pubkey(), sol_to_lamports(wallet_sol))
        await storage.settings.update(user_id, motherload_threshold=threshold)
        if automation is not None:
            per_square, squares, balance = automation
            chain.set_automation(
                keypair.pubkey(), sol_to_lamports(per_square), sol_to_lamports(balance), squares,
            )
            if checkpoint_id is None:
                checkpoint_id = chain.round_id - 1
            chain.set_miner(keypair.pubkey(), checkpoint_id=checkpoint_id, round_id=checkpoint_id)
        return keypair

    return _make
