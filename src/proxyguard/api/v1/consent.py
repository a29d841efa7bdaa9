"""Consent dashboard, history and modification endpoints."""

from fastapi import APIRouter, Depends, Query

from proxyguard.dependencies import get_current_user_id, get_services, verify_api_key
from proxyguard.engine.container import ProxyServices
from proxyguard.schemas.authorization import ActionType, Authorization
from proxyguard.schemas.consent import (
    ConsentChangeType,
    ConsentDashboard,
    ConsentHistoryEntry,
    ConsentHistoryQuery,
    ConsentModification,
)

router = APIRouter(
    prefix="/v1/consent",
    tags=["consent"],
    dependencies=[Depends(verify_api_key)],
)


@router.get("/dashboard", response_model=ConsentDashboard)
async def consent_dashboard(
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> ConsentDashboard:
    return await services.consent.get_consent_dashboard(user_id)


@router.get("/history", response_model=list[ConsentHistoryEntry])
async def consent_history(
    change_type: ConsentChangeType | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> list[ConsentHistoryEntry]:
    query = ConsentHistoryQuery(change_type=change_type, limit=limit, offset=offset)
    return await services.consent.get_consent_history(user_id, query)


@router.get("/reminders", response_model=list[Authorization])
async def consent_reminders(
    days_ahead: int = Query(default=7, ge=1, le=90),
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> list[Authorization]:
    return await services.consent.get_consent_reminders(user_id, days_ahead)


@router.get("/integration/{action_type}", response_model=list[Authorization])
async def integration_consents(
    action_type: ActionType,
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> list[Authorization]:
    return await services.consent.get_integration_consents(user_id, action_type)


@router.patch("/{authorization_id}", response_model=Authorization)
async def modify_consent(
    authorization_id: str,
    changes: ConsentModification,
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> Authorization:
    return await services.consent.modify_consent(authorization_id, user_id, changes)
