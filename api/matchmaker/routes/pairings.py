from typing import Any

from fastapi import APIRouter, Depends

from ..deps import get_services
from ..schemas import BreakupRequest, UpdateActivityRequest
from ..wiring import EngineServices

router = APIRouter()


@router.get("/pairings/current/{user_id}")
def current_pairing(user_id: str, services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return {"user_id": user_id, "pairing": services.pairing.get_current_pairing(user_id)}


@router.get("/pairings/history/{user_id}")
def pairing_history(user_id: str, services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return {"user_id": user_id, "pairings": services.pairing.get_pairing_history(user_id)}


@router.get("/pairings/active")
def active_pairings(services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return {"pairings": services.pairing.list_active_pairings()}


@router.get("/pairings/blacklist/{user1_id}/{user2_id}")
def blacklist_status(user1_id: str, user2_id: str, services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return services.pairing.check_blacklist_status(user1_id, user2_id)


@router.get("/pairings/{pairing_id}")
def get_pairing(pairing_id: int, services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return services.pairing.get_pairing(pairing_id)


@router.patch("/pairings/{pairing_id}/activity")
def update_activity(
    pairing_id: int,
    payload: UpdateActivityRequest,
    services: EngineServices = Depends(get_services),
) -> dict[str, Any]:
    return services.pairing.update_activity(pairing_id, payload.model_dump())


@router.post("/pairings/{pairing_id}/breakup")
def breakup(pairing_id: int, payload: BreakupRequest, services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return services.pairing.breakup(
        pairing_id,
        payload.initiator_id,
        reason=payload.reason,
        mutual=payload.mutual_breakup,
    )
