"""Users router: /api/users and per-user automation, settings and history."""

from fastapi import APIRouter, HTTPException
from solders.pubkey import Pubkey
from starlette.requests import Request

from orbminer.deps import get_server, require_user
from orbminer.errors import WalletError
from orbminer.models import RegisterUserRequest, SettingsUpdateRequest

router = APIRouter()


@router.post("/api/users")
async def register_user(request: Request, req: RegisterUserRequest):
    srv = get_server(request)
    if not req.user_id.strip():
        raise HTTPException(status_code=400, detail="user_id is required")
    try:
        if req.secret_key:
            user = await srv.wallets.import_key(req.user_id, req.secret_key)
        else:
            _, user = await srv.wallets.generate(req.user_id)
    except WalletError as e:
        raise HTTPException(status_code=400, detail=str(e))
    await srv.storage.settings.get(req.user_id)
    return {"user_id": user["user_id"], "public_key": user["public_key"]}


@router.get("/api/users/{user_id}/automation")
async def automation_status(request: Request, user_id: str):
    srv = get_server(request)
    user = await require_user(srv, user_id)
    status = await srv.lifecycle.get_status(Pubkey.from_string(user["public_key"]))
    result = status.to_dict()
    result["user_id"] = user_id
    result["public_key"] = user["public_key"]
    return result


@router.post("/api/users/{user_id}/automation")
async def create_automation(request: Request, user_id: str):
    srv = get_server(request)
    await require_user(srv, user_id)
    wallet = await srv.wallets.resolve_signing_key(user_id)
    if wallet is None:
        raise HTTPException(status_code=409, detail="Wallet key unavailable")
    settings = await srv.storage.settings.get(user_id)
    result = await srv.lifecycle.create(wallet, settings, user_id)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)
    return result.to_dict()


@router.delete("/api/users/{user_id}/automation")
async def close_automation(request: Request, user_id: str):
    srv = get_server(request)
    await require_user(srv, user_id)
    wallet = await srv.wallets.resolve_signing_key(user_id)
    if wallet is None:
        raise HTTPException(status_code=409, detail="Wallet key unavailable")
    result = await srv.lifecycle.close(wallet, user_id)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)
    return result.to_dict()


@router.get("/api/users/{user_id}/settings")
async def get_settings(request: Request, user_id: str):
    srv = get_server(request)
    await require_user(srv, user_id)
    return await srv.storage.settings.get(user_id)


@router.put("/api/users/{user_id}/settings")
async def update_settings(request: Request, user_id: str, req: SettingsUpdateRequest):
    srv = get_server(request)
    await require_user(srv, user_id)
    try:
        return await srv.storage.settings.update(user_id, **req.changes())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/api/users/{user_id}/rounds")
async def list_rounds(request: Request, user_id: str, limit: int = 10):
    srv = get_server(request)
    await require_user(srv, user_id)
    return {
        "rounds": await srv.storage.rounds.list_for_user(user_id, limit=limit),
        "stats": await srv.storage.rounds.stats_for_user(user_id),
    }


@router.get("/api/users/{user_id}/transactions")
async def list_transactions(request: Request, user_id: str, limit: int = 50):
    srv = get_server(request)
    await require_user(srv, user_id)
    return await srv.storage.transactions.list_for_user(user_id, limit=limit)


@router.get("/api/users/{user_id}/notifications")
async def list_notifications(request: Request, user_id: str, limit: int = 20):
    srv = get_server(request)
    await require_user(srv, user_id)
    return await srv.storage.notifications.list_for_user(user_id, limit=limit)
