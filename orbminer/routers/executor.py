"""Executor router: /, /api/executor/* endpoints."""

from fastapi import APIRouter
from starlette.requests import Request

from orbminer.deps import get_server

router = APIRouter()


@router.get("/")
async def root(request: Request):
    srv = get_server(request)
    return {
        "service": "ORB Miner Automation",
        "api_port": srv.config.api_port,
        "simulate": srv.config.simulate,
        "executor_running": srv.executor.running if srv.executor else False,
        "claimer_running": srv.claimer.running if srv.claimer else False,
    }


@router.get("/api/executor/status")
async def executor_status(request: Request):
    srv = get_server(request)
    return srv.executor.status()


@router.post("/api/executor/trigger")
async def executor_trigger(request: Request):
    srv = get_server(request)
    report = await srv.executor.trigger()
    return report.to_dict()
