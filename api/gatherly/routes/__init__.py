from fastapi import APIRouter, FastAPI

from .admin import router as admin_router, scaffold_router as admin_scaffold_router
from .chat import router as chat_router, scaffold_router as chat_scaffold_router
from .events import router as events_router, scaffold_router as events_scaffold_router
from .safety import router as safety_router, scaffold_router as safety_scaffold_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(events_router, tags=["events"])
    app.include_router(chat_router, tags=["chat"])
    app.include_router(safety_router, tags=["safety"])
    app.include_router(admin_router, tags=["admin"])

    app.include_router(events_scaffold_router, prefix="/_scaffold/events", tags=["scaffold-events"])
    app.include_router(chat_scaffold_router, prefix="/_scaffold/chat", tags=["scaffold-chat"])
    app.include_router(safety_scaffold_router, prefix="/_scaffold/safety", tags=["scaffold-safety"])
    app.include_router(admin_scaffold_router, prefix="/_scaffold/admin", tags=["scaffold-admin"])


__all__ = ["include_modular_routers", "APIRouter"]
