"""
errors.py - Ledger error type and chain error classification.

The chain SDK reports program failures as free text (RPC messages and program
logs), so classification is substring based. All of the mapping lives in
classify_chain_error(); anything it does not recognise is CHAIN_ERROR.
"""

import enum
from typing import List, Optional, Union


class LedgerError(RuntimeError):
    """Failure of a read or write against the remote ledger."""

    def __init__(self, message: str, logs: Optional[List[str]] = None):
        super().__init__(message)
        self.logs = list(logs or [])

    def __str__(self) -> str:
        base = super().__str__()
        if self.logs:
            return base + " | " + " | ".join(self.logs)
        return base


class TransactionFailedError(LedgerError):
    """A submitted transaction was not confirmed or landed with an error."""

    def __init__(self, signature: str, message: str = "", logs: Optional[List[str]] = None):
        super().__init__(message or f"Transaction {signature} failed", logs)
        self.signature = signature


class WalletError(ValueError):
    """A stored signing key could not be decrypted or parsed."""


class ChainErrorKind(str, enum.Enum):
    CHECKPOINT_REQUIRED = "checkpoint_required"
    ALREADY_DEPLOYED = "already_deployed"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    BLOCKHASH_EXPIRED = "blockhash_expired"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    CHAIN_ERROR = "chain_error"


# Order matters: the first match wins.
_PATTERNS = [
    (ChainErrorKind.CHECKPOINT_REQUIRED, ("not checkpointed", "checkpoint")),
    (ChainErrorKind.ALREADY_DEPLOYED, ("alreadydeployed", "already deployed")),
    (ChainErrorKind.INSUFFICIENT_BALANCE, ("insufficient",)),
    (ChainErrorKind.BLOCKHASH_EXPIRED, ("blockhash not found", "block height exceeded", "blockhash expired")),
    (ChainErrorKind.RATE_LIMITED, ("429", "too many requests", "rate limit")),
    (ChainErrorKind.TIMEOUT, ("timed out", "timeout", "unconfirmed")),
]


def classify_chain_error(error: Union[BaseException, str, None]) -> ChainErrorKind:
    if error is None:
        return ChainErrorKind.CHAIN_ERROR
    text = str(error).lower()
    for kind, needles in _PATTERNS:
        if any(n in text for n in needles):
            return kind
    return ChainErrorKind.CHAIN_ERROR
