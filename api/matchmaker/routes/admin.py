from typing import Any

from fastapi import APIRouter, Body, Depends

from ..deps import get_services, require_admin
from ..schemas import CreatePairingRequest, QueueConfigUpdate, UnpairRequest
from ..wiring import EngineServices

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@router.get("/queue/config")
def admin_queue_config(services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return services.queue.get_config()


@router.post("/queue/config")
def admin_set_queue_config(payload: QueueConfigUpdate, services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return services.queue.set_enabled(payload.queue_enabled, payload.updated_by)


@router.get("/queue/stats")
def admin_queue_stats(services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return services.stats.queue_statistics()


@router.get("/queue/users")
def admin_queue_users(services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    users = services.stats.queue_user_details()
    return {"total": len(users), "users": users}


@router.post("/matchmaking/run")
def admin_run_matchmaking(services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    created = services.matchmaking.run()
    return {"created": len(created), "pairings": created}


@router.post("/pairings")
def admin_create_pairing(payload: CreatePairingRequest, services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return services.pairing.create_pairing(
        payload.user1_id,
        payload.user2_id,
        payload.compatibility_score,
        {**payload.metadata, "source": "admin"},
    )


@router.get("/pairings/inactive")
def admin_inactive_pairings(services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return {"pairings": services.pairing.list_inactive_pairings()}


@router.post("/pairings/{pairing_id}/unpair")
def admin_unpair(
    pairing_id: int,
    payload: UnpairRequest | None = Body(default=None),
    services: EngineServices = Depends(get_services),
) -> dict[str, Any]:
    return services.pairing.unpair(pairing_id, payload.actor if payload else None)


@router.post("/pairings/deactivate-all")
def admin_deactivate_all(
    payload: UnpairRequest | None = Body(default=None),
    services: EngineServices = Depends(get_services),
) -> dict[str, Any]:
    return {"deactivated": services.pairing.deactivate_all(payload.actor if payload else None)}


@router.delete("/pairings/inactive")
def admin_delete_inactive(services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return {"deleted": services.pairing.delete_all_inactive()}


@router.delete("/pairings/{pairing_id}")
def admin_delete_pairing(pairing_id: int, services: EngineServices = Depends(get_services)) -> dict[str, Any]:
    return {"pairing_id": pairing_id, "deleted": services.pairing.permanently_delete(pairing_id)}
