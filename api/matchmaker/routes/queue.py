from typing import Any

from fastapi import APIRouter, Depends

from ..deps import get_services
from ..schemas import JoinQueueRequest, LeaveQueueRequest, QueueStatusResponse
from ..wiring import EngineServices

router = APIRouter()


@router.post("/queue/join", response_model=QueueStatusResponse)
def join_queue(payload: JoinQueueRequest, services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return services.queue.join(payload.user_id, payload.preferences())


@router.post("/queue/leave")
def leave_queue(payload: LeaveQueueRequest, services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    removed = services.queue.leave(payload.user_id)
    return {"user_id": payload.user_id, "removed": removed}


@router.get("/queue/status/{user_id}", response_model=QueueStatusResponse)
def queue_status(user_id: str, services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return services.queue.status(user_id)


@router.get("/queue/config")
def queue_config(services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return services.queue.get_config()
