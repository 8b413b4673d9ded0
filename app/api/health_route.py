from fastapi import APIRouter, Depends
from typing import Annotated
from app.dependencies.depends import ServiceContainer, get_container

router = APIRouter(tags=["HEALTH"])


@router.get("/health")
async def health(container: Annotated[ServiceContainer, Depends(get_container)]):
    return {
        "status": "ok",
        "active_conversations": container.conversations.count(),
        "uptime_seconds": round(container.uptime(), 1),
    }


@router.get("/api/stats")
async def stats(container: Annotated[ServiceContainer, Depends(get_container)]):
    return {
        "active_conversations": container.conversations.count(),
        "pending_deadlines": container.scheduler.pending(),
        "conversations": container.conversations.snapshot(),
    }
