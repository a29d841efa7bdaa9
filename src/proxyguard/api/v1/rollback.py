"""Rollback eligibility, execution and history endpoints."""

from fastapi import APIRouter, Depends, Query

from proxyguard.dependencies import get_current_user_id, get_services, verify_api_key
from proxyguard.engine.container import ProxyServices
from proxyguard.exceptions import RollbackNotFound
from proxyguard.schemas.rollback import (
    ExecuteRollbackRequest,
    Rollback,
    RollbackEligibility,
    RollbackHistoryQuery,
    RollbackStatus,
    RollbackVerification,
)

router = APIRouter(
    prefix="/v1/rollback",
    tags=["rollback"],
    dependencies=[Depends(verify_api_key)],
)


@router.get(
    "/check/{audit_entry_id}",
    response_model=RollbackEligibility,
    summary="Can this audited action be undone?",
)
async def check_rollback(
    audit_entry_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> RollbackEligibility:
    # Entries owned by someone else look the same as missing ones
    entry = await services.audit.get_audit_entry(audit_entry_id, user_id)
    if entry is None:
        return RollbackEligibility(can_rollback=False, reason="Audit entry not found")
    return await services.rollbacks.can_rollback(audit_entry_id)


@router.post("", response_model=Rollback, summary="Undo an audited action")
async def execute_rollback(
    request: ExecuteRollbackRequest,
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> Rollback:
    return await services.rollbacks.execute_rollback(
        request.audit_entry_id, user_id, request.reason
    )


@router.get("/history", response_model=list[Rollback], summary="The caller's rollback attempts")
async def rollback_history(
    status: RollbackStatus | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> list[Rollback]:
    query = RollbackHistoryQuery(status=status, limit=limit, offset=offset)
    return await services.rollbacks.get_rollback_history(user_id, query)


@router.get("/{rollback_id}", response_model=Rollback)
async def get_rollback(
    rollback_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> Rollback:
    return await services.rollbacks.get_rollback(rollback_id, user_id)


@router.get("/{rollback_id}/verify", response_model=RollbackVerification)
async def verify_rollback(
    rollback_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> RollbackVerification:
    # Rollbacks owned by someone else look the same as missing ones
    try:
        await services.rollbacks.get_rollback(rollback_id, user_id)
    except RollbackNotFound:
        return RollbackVerification(verified=False, message="Rollback not found")
    return await services.rollbacks.verify_rollback(rollback_id)
