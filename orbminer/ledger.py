"""
ledger.py - Remote ledger client.

Thin async wrapper over solana-py's AsyncClient exposing only the reads and
writes the automation service needs. Every call goes through one shared token
bucket so concurrent workers stay inside the RPC endpoint's rate budget.
Library exceptions are re-raised as LedgerError.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from orbminer.errors import LedgerError, TransactionFailedError

logger = logging.getLogger("ledger")

DEFAULT_RATE_LIMIT_TOKENS = 40
DEFAULT_RATE_LIMIT_WINDOW_SEC = 10.0
DEFAULT_CONFIRM_TIMEOUT_SEC = 60.0


class TokenBucket:
    """Refilling token bucket shared by all callers of one endpoint."""

    def __init__(
        self,
        tokens: int = DEFAULT_RATE_LIMIT_TOKENS,
        refill_seconds: float = DEFAULT_RATE_LIMIT_WINDOW_SEC,
    ):
        self.tokens = float(tokens)
        self.max_tokens = float(tokens)
        self.refill_rate = tokens / refill_seconds
        self.last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, timeout: float = 30.0) -> bool:
        """Take one token, waiting up to ``timeout`` seconds. False on timeout."""
        start = time.monotonic()
        while True:
            async with self._lock:
                self._refill()
                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return True
                wait_time = (1.0 - self.tokens) / self.refill_rate
                if time.monotonic() - start + wait_time > timeout:
                    logger.warning("Rate limit timeout (%.1fs)", timeout)
                    return False
            # Sleep outside the lock so other waiters can refill too.
            await asyncio.sleep(min(wait_time, 0.5))


def _rpc_logs(exc: Exception) -> List[str]:
    if not exc.args:
        return []
    data = getattr(exc.args[0], "data", None)
    logs = getattr(data, "logs", None)
    return list(logs or [])


class LedgerClient:
    """Rate-limited async client for the chain RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        rate_limit_tokens: int = DEFAULT_RATE_LIMIT_TOKENS,
        rate_limit_window_sec: float = DEFAULT_RATE_LIMIT_WINDOW_SEC,
        confirm_timeout_sec: float = DEFAULT_CONFIRM_TIMEOUT_SEC,
    ):
        self.rpc_url = rpc_url
        self._client = AsyncClient(rpc_url, commitment=Confirmed)
        self._bucket = TokenBucket(rate_limit_tokens, rate_limit_window_sec)
        self._confirm_timeout = confirm_timeout_sec
        # signature -> last valid block height of the blockhash it was signed with
        self._pending: Dict[str, int] = {}
        logger.info("Ledger client for %s (rate %d/%.0fs)", rpc_url, rate_limit_tokens, rate_limit_window_sec)

    async def _throttle(self):
        if not await self._bucket.acquire():
            raise LedgerError("RPC rate limit exceeded")

    async def get_account_info(self, address: Pubkey) -> Optional[bytes]:
        await self._throttle()
        try:
            resp = await self._client.get_account_info(address)
        except (RPCException, SolanaRpcException) as e:
            raise LedgerError(f"get_account_info {address} failed: {e}") from e
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def get_slot(self) -> int:
        await self._throttle()
        try:
            resp = await self._client.get_slot()
        except (RPCException, SolanaRpcException) as e:
            raise LedgerError(f"get_slot failed: {e}") from e
        return resp.value

    async def get_balance(self, pubkey: Pubkey) -> int:
        await self._throttle()
        try:
            resp = await self._client.get_balance(pubkey)
        except (RPCException, SolanaRpcException) as e:
            raise LedgerError(f"get_balance {pubkey} failed: {e}") from e
        return resp.value

    async def get_latest_blockhash(self) -> Hash:
        blockhash, _ = await self._latest_blockhash()
        return blockhash

    async def _latest_blockhash(self):
        await self._throttle()
        try:
            resp = await self._client.get_latest_blockhash()
        except (RPCException, SolanaRpcException) as e:
            raise LedgerError(f"get_latest_blockhash failed: {e}") from e
        return resp.value.blockhash, resp.value.last_valid_block_height

    async def send_transaction(self, instructions: Sequence[Instruction], signer: Keypair) -> str:
        """Sign ``instructions`` with ``signer`` as fee payer and submit them."""
        blockhash, last_valid = await self._latest_blockhash()
        tx = Transaction.new_signed_with_payer(
            list(instructions), signer.pubkey(), [signer], blockhash,
        )
        await self._throttle()
        try:
            resp = await self._client.send_raw_transaction(
                bytes(tx), opts=TxOpts(preflight_commitment=Confirmed),
            )
        except RPCException as e:
            raise LedgerError(f"Transaction rejected: {e}", logs=_rpc_logs(e)) from e
        except SolanaRpcException as e:
            raise LedgerError(f"send_transaction failed: {e}") from e
        signature = str(resp.value)
        self._pending[signature] = last_valid
        logger.debug("Sent %s (%d instruction(s))", signature, len(instructions))
        return signature

    async def confirm_transaction(self, signature: str) -> bool:
        """Wait for ``signature`` to reach confirmed commitment.

        Returns False if the transaction landed with an error. Raises
        TransactionFailedError if it could not be confirmed at all.
        """
        last_valid = self._pending.pop(signature, None)
        await self._throttle()
        try:
            resp = await asyncio.wait_for(
                self._client.confirm_transaction(
                    Signature.from_string(signature),
                    commitment=Confirmed,
                    last_valid_block_height=last_valid,
                ),
                timeout=self._confirm_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransactionFailedError(signature, f"Confirmation timed out for {signature}") from e
        except (UnconfirmedTxError, TransactionExpiredBlockheightExceededError) as e:
            raise TransactionFailedError(signature, f"Unconfirmed {signature}: {e}") from e
        except (RPCException, SolanaRpcException) as e:
            raise TransactionFailedError(signature, f"Confirm {signature} failed: {e}") from e
        status = resp.value[0] if resp.value else None
        if status is None:
            return False
        if status.err is not None:
            logger.warning("Transaction %s landed with error: %s", signature, status.err)
            return False
        return True

    async def close(self):
        await self._client.close()
        logger.info("Ledger client closed")


async def send_and_confirm(ledger: "LedgerClient", instructions: Sequence[Instruction], signer: Keypair) -> str:
    """Submit and wait for confirmation. Raises TransactionFailedError on failure."""
    signature = await ledger.send_transaction(instructions, signer)
    if not await ledger.confirm_transaction(signature):
        raise TransactionFailedError(signature)
    return signature
