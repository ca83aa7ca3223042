from fastapi import APIRouter

from . import auth, health, sessions


def get_api_router() -> APIRouter:
    router = APIRouter()
    router.include_router(health.router)
    router.include_router(auth.router)
    router.include_router(sessions.router)
    return router
