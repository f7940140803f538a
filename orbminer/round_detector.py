"""Round-transition detection over the global board account."""

import logging
from typing import TYPE_CHECKING, Optional, Tuple

from orbminer import decoder

if TYPE_CHECKING:
    from orbminer.decoder import BoardState
    from orbminer.ledger import LedgerClient

logger = logging.getLogger("executor")


class RoundTransitionDetector:
    """Fires once per distinct observed round id.

    ``observe`` compares and updates ``last_round_id`` without yielding to the
    event loop, so concurrent pollers reading the same round never both fire.
    """

    def __init__(self):
        self.last_round_id: Optional[int] = None

    def observe(self, round_id: int) -> bool:
        if round_id == self.last_round_id:
            return False
        previous, self.last_round_id = self.last_round_id, round_id
        if previous is None:
            logger.info("First observed round: %d", round_id)
        else:
            logger.info("New round detected: %d -> %d", previous, round_id)
        return True

    async def poll(self, ledger: "LedgerClient") -> Tuple["BoardState", bool]:
        """Read the board. Returns (board, True) the first time its round is seen."""
        board = await decoder.fetch_board(ledger)
        return board, self.observe(board.round_id)

    def rollback(self, previous: Optional[int]):
        """Forget the latest transition so the next poll fires for that round again."""
        if previous != self.last_round_id:
            logger.info("Round %s will be retried", self.last_round_id)
        self.last_round_id = previous

    def reset(self):
        self.last_round_id = None
