"""User-facing notifications.

Events are written to the notifications outbox and logged. Delivery to chat
users happens elsewhere: a bot drains ``list_pending()`` and marks rows
delivered.
"""

import logging
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from orbminer.storage import NotificationRepo

logger = logging.getLogger("notify")

AUTOMATION_ERROR = "automation_error"
AUTOMATION_RESTARTED = "automation_restarted"
DEPLOYED = "deployed"
CLAIMED = "claimed"


class Notifier:

    def __init__(self, repo: "NotificationRepo"):
        self._repo = repo

    async def send(self, user_id: str, ntype: str, title: str, message: str) -> Optional[int]:
        """Queue a notification. Storage failures are logged, never raised."""
        try:
            nid = await self._repo.push(user_id, ntype, title, message)
        except Exception:
            logger.exception("Failed to queue %s notification for %s", ntype, user_id)
            return None
        logger.info("Queued %s for %s: %s", ntype, user_id, title)
        return nid

    async def automation_error(self, user_id: str, error: str) -> Optional[int]:
        return await self.send(
            user_id, AUTOMATION_ERROR, "Automation Error",
            f"Automation encountered an error:\n\n{error}\n\nPlease check your settings and balance.",
        )

    async def automation_restarted(self, user_id: str, deposited_sol: float, target_rounds: int) -> Optional[int]:
        return await self.send(
            user_id, AUTOMATION_RESTARTED, "Automation Restarted",
            f"Automation was refunded and restarted with {deposited_sol:.4f} SOL "
            f"for {target_rounds} rounds. Deploys resume next round.",
        )

    async def deployed(self, user_id: str, round_id: int, sol_amount: float, signature: str) -> Optional[int]:
        return await self.send(
            user_id, DEPLOYED, f"Deployed in round {round_id}",
            f"Deployed {sol_amount:.4f} SOL in round {round_id}.\nSignature: {signature}",
        )

    async def claimed(self, user_id: str, rewards: List[str]) -> Optional[int]:
        lines = "\n".join(f"• {r}" for r in rewards)
        return await self.send(user_id, CLAIMED, "Auto-Claim Successful", f"Claimed:\n{lines}")
