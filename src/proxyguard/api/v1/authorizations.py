"""Authorization grant / check / revoke endpoints."""

from fastapi import APIRouter, Depends, Query, status

from proxyguard.dependencies import get_current_user_id, get_services, verify_api_key
from proxyguard.engine.container import ProxyServices
from proxyguard.schemas.authorization import (
    Authorization,
    AuthorizationCheck,
    AuthorizationCheckResult,
    GrantAuthorizationRequest,
    RevokeAuthorizationRequest,
)

router = APIRouter(
    prefix="/v1/authorizations",
    tags=["authorizations"],
    dependencies=[Depends(verify_api_key)],
)


@router.post(
    "",
    response_model=Authorization,
    status_code=status.HTTP_201_CREATED,
    summary="Grant a proxy authorization",
)
async def grant_authorization(
    request: GrantAuthorizationRequest,
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> Authorization:
    return await services.authorizations.grant_authorization(
        user_id,
        request.action_class,
        scope=request.scope,
        grant_method=request.grant_method,
        action_type=request.action_type,
        conditions=request.conditions,
        expires_at=request.expires_at,
        metadata=request.metadata,
    )


@router.get("", response_model=list[Authorization], summary="List the caller's authorizations")
async def list_authorizations(
    include_inactive: bool = Query(default=False),
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> list[Authorization]:
    return await services.authorizations.get_user_authorizations(user_id, include_inactive)


@router.post(
    "/check",
    response_model=AuthorizationCheckResult,
    response_model_exclude_none=True,
    summary="Check whether an action may proceed",
)
async def check_authorization(
    request: AuthorizationCheck,
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> AuthorizationCheckResult:
    return await services.authorizations.check_authorization(
        user_id, request.action_class, request.confidence, request.metadata
    )


@router.get("/{authorization_id}", response_model=Authorization)
async def get_authorization(
    authorization_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> Authorization:
    return await services.authorizations.get_authorization(authorization_id, user_id)


@router.delete("/{authorization_id}", response_model=Authorization, summary="Revoke a grant")
async def revoke_authorization(
    authorization_id: str,
    request: RevokeAuthorizationRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    services: ProxyServices = Depends(get_services),
) -> Authorization:
    reason = request.reason if request else None
    return await services.authorizations.revoke_authorization(authorization_id, user_id, reason)
