"""Audit log write and query endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status

from proxyguard.dependencies import get_current_user_id, get_services, verify_api_key
from proxyguard.engine.container import ProxyServices
from proxyguard.exceptions import AuditEntryNotFound
from proxyguard.schemas.audit import (
    AuditEntry,
    AuditQuery,
    AuditStats,
    LogProxyActionParams,
    LogProxyActionRequest,
    OperatingMode,
)

router = APIRouter(
    prefix="/v1/audit",
    tags=["audit"],
    dependencies=[Depends(verify_api_key)],
)


@router.post(
    "",
    response_model=AuditEntry,
    status_code=status.HTTP_201_CREATED,
    summary="Record an action the host performed on the user's behalf",
)
async def log_proxy_action(
    request: LogProxyActionRequest,
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> AuditEntry:
    params = LogProxyActionParams(user_id=user_id, **request.model_dump())
    return await services.audit.log_proxy_action(params)


@router.get("", response_model=list[AuditEntry], summary="Query the caller's audit log")
async def get_audit_log(
    action_class: str | None = None,
    mode: OperatingMode | None = None,
    success: bool | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: int | None = Query(default=None, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> list[AuditEntry]:
    query = AuditQuery(
        action_class=action_class,
        mode=mode,
        success=success,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return await services.audit.get_audit_log(user_id, query)


@router.get("/stats", response_model=AuditStats, summary="Aggregate audit statistics")
async def get_audit_stats(
    days: int | None = Query(default=None, ge=1, le=365),
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> AuditStats:
    return await services.audit.get_audit_stats(user_id, days)


@router.get("/failures", response_model=list[AuditEntry], summary="Most recent failed actions")
async def get_recent_failures(
    limit: int = Query(default=10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> list[AuditEntry]:
    return await services.audit.get_recent_failures(user_id, limit)


@router.get("/{entry_id}", response_model=AuditEntry)
async def get_audit_entry(
    entry_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> AuditEntry:
    entry = await services.audit.get_audit_entry(entry_id, user_id)
    if entry is None:
        raise AuditEntryNotFound(entry_id)
    return entry
