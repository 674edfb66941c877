"""
User entitlement API routes.

Reads: a user's grants, effective permissions, single-permission checks and
the modules available to them.
Writes: data permission grants/revokes, module grants/revokes and custom
role assignment. Every write is audited in the request transaction.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.database.engine import get_db
from entitlements.features.audit.service import RequestMeta
from entitlements.features.permissions import service
from entitlements.features.permissions.schemas import (
    AssignCustomRoleRequest,
    AvailableModulesResponse,
    BulkGrantRequest,
    BulkGrantResponse,
    EffectivePermissionsResponse,
    GrantPermissionRequest,
    GrantResponse,
    ModuleGrantRequest,
    ModuleGrantResponse,
    ModuleRevokeRequest,
    PermissionCheckResponse,
    UserCustomRoleResponse,
    UserPermissionsResponse,
)
from entitlements.features.users.dependencies import get_current_user
from entitlements.features.users.models import User


router = APIRouter()


# ============================================================================
# Reads
# ============================================================================

@router.get("/users/{user_id}/permissions", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: str,
    company_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Active data grants, denials and module grants of a user."""
    return await service.list_user_permissions(db, current_user, user_id, company_id)


@router.get("/users/{user_id}/permissions/effective", response_model=EffectivePermissionsResponse)
async def get_effective_permissions(
    user_id: str,
    company_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Resolved permission set with the source of every permission."""
    return await service.effective_permissions(db, current_user, user_id, company_id)


@router.get("/users/{user_id}/permissions/check/{permission_key}", response_model=PermissionCheckResponse)
async def check_user_permission(
    user_id: str,
    permission_key: str,
    company_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Check whether a user currently holds a permission."""
    return await service.check_permission(db, current_user, user_id, permission_key, company_id)


@router.get("/users/{user_id}/modules/available", response_model=AvailableModulesResponse)
async def get_available_modules(
    user_id: str,
    company_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Every active module with company provisioning, the user's grant and final access."""
    return await service.available_modules(db, current_user, user_id, company_id)


# ============================================================================
# Data permission grants
# ============================================================================

@router.post("/users/{user_id}/permissions/grant", response_model=GrantResponse)
async def grant_permission(
    user_id: str,
    body: GrantPermissionRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Grant or revoke one data permission."""
    return await service.grant_permission(
        db,
        current_user,
        user_id,
        company_id=body.company_id,
        permission_key=body.permission_key,
        is_granted=body.is_granted,
        reason=body.reason,
        expires_at=body.expires_at,
        meta=RequestMeta.from_request(request),
    )


@router.post("/users/{user_id}/permissions/bulk-grant", response_model=BulkGrantResponse)
async def bulk_grant_permissions(
    user_id: str,
    body: BulkGrantRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Grant several permissions; failing items are reported, not fatal."""
    return await service.bulk_grant_permissions(
        db,
        current_user,
        user_id,
        company_id=body.company_id,
        items=[item.model_dump() for item in body.permissions],
        reason=body.reason,
        meta=RequestMeta.from_request(request),
    )


# ============================================================================
# Module grants
# ============================================================================

@router.post("/users/{user_id}/modules/grant", response_model=ModuleGrantResponse)
async def grant_module(
    user_id: str,
    body: ModuleGrantRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Give a user access to a provisioned module."""
    return await service.grant_module(
        db,
        current_user,
        user_id,
        company_id=body.company_id,
        module_id=body.module_id,
        restrictions=body.restrictions,
        expires_at=body.expires_at,
        meta=RequestMeta.from_request(request),
    )


@router.post("/users/{user_id}/modules/revoke", response_model=ModuleGrantResponse)
async def revoke_module(
    user_id: str,
    body: ModuleRevokeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Disable a user's module grant."""
    return await service.revoke_module(
        db,
        current_user,
        user_id,
        company_id=body.company_id,
        module_id=body.module_id,
        reason=body.reason,
        meta=RequestMeta.from_request(request),
    )


@router.put("/users/{user_id}/custom-role", response_model=UserCustomRoleResponse)
async def assign_custom_role(
    user_id: str,
    body: AssignCustomRoleRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Assign or clear a user's custom role."""
    return await service.assign_custom_role(
        db, current_user, user_id, body.custom_role_id, meta=RequestMeta.from_request(request)
    )
