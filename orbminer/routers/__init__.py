"""Router package: collects all API routers and registers them on the FastAPI app."""

from fastapi import FastAPI

from orbminer.routers import claimer, executor, users


def register_all_routers(app: FastAPI):
    app.include_router(executor.router)
    app.include_router(users.router)
    app.include_router(claimer.router)
