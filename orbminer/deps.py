"""Dependency helpers for router modules."""

from fastapi import HTTPException
from starlette.requests import Request


def get_server(request: Request):
    return request.app.state.server


async def require_user(srv, user_id: str) -> dict:
    user = await srv.storage.users.get(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user
