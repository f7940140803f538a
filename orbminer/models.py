"""Pydantic request models for the REST API."""

from typing import Optional
from pydantic import BaseModel


class RegisterUserRequest(BaseModel):
    user_id: str
    secret_key: Optional[str] = None  # base58 or JSON array; generated when omitted


class SettingsUpdateRequest(BaseModel):
    motherload_threshold: Optional[float] = None
    sol_per_block: Optional[float] = None
    num_blocks: Optional[int] = None
    automation_budget_percent: Optional[float] = None
    auto_claim_sol_threshold: Optional[float] = None
    auto_claim_orb_threshold: Optional[float] = None

    def changes(self) -> dict:
        return {
            k: v for k, v in (
                ("motherload_threshold", self.motherload_threshold),
                ("sol_per_block", self.sol_per_block),
                ("num_blocks", self.num_blocks),
                ("automation_budget_percent", self.automation_budget_percent),
                ("auto_claim_sol_threshold", self.auto_claim_sol_threshold),
                ("auto_claim_orb_threshold", self.auto_claim_orb_threshold),
            ) if v is not None
        }
