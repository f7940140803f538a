"""Claimer router: /api/claimer/status and manual reward claims."""

from fastapi import APIRouter, HTTPException
from starlette.requests import Request

from orbminer.deps import get_server, require_user

router = APIRouter()


@router.get("/api/claimer/status")
async def claimer_status(request: Request):
    srv = get_server(request)
    return srv.claimer.status()


@router.post("/api/users/{user_id}/claim")
async def claim_rewards(request: Request, user_id: str):
    """Claim all SOL and ORB mining rewards now, ignoring the auto-claim thresholds."""
    srv = get_server(request)
    await require_user(srv, user_id)
    wallet = await srv.wallets.resolve_signing_key(user_id)
    if wallet is None:
        raise HTTPException(status_code=409, detail="Wallet key unavailable")
    results = [
        await srv.claimer.claim_sol(wallet, user_id),
        await srv.claimer.claim_orb(wallet, user_id),
    ]
    return {"user_id": user_id, "claims": [r.to_dict() for r in results]}
