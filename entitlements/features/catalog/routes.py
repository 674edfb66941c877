"""
Catalog API routes: permissions and modules.
"""
from typing import List, Literal, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.database.engine import get_db
from entitlements.features.catalog import service
from entitlements.features.catalog.schemas import (
    ModuleResponse,
    PermissionCreate,
    PermissionDependenciesResponse,
    PermissionListResponse,
    PermissionResponse,
    PermissionUpdate,
)
from entitlements.features.users.dependencies import get_current_user
from entitlements.features.users.models import User


router = APIRouter()


# ============================================================================
# Permission Routes
# ============================================================================

@router.get("/permissions", response_model=PermissionListResponse)
async def list_permissions(
    company_id: Optional[str] = None,
    foundation_only: bool = False,
    grouped: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List the permission catalog, optionally narrowed to what a company can use."""
    return await service.list_permissions(
        db, current_user, company_id=company_id, foundation_only=foundation_only, grouped=grouped
    )


@router.post("/permissions", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    permission: PermissionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a new permission (super-admin only)."""
    return await service.create_permission(db, current_user, permission.model_dump())


@router.get("/permissions/{permission_key}/dependencies", response_model=PermissionDependenciesResponse)
async def get_permission_dependencies(
    permission_key: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Direct prerequisites of a permission."""
    return await service.get_permission_dependencies(db, permission_key)


@router.put("/permissions/{permission_key}", response_model=PermissionResponse)
async def update_permission(
    permission_key: str,
    permission_update: PermissionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Update a permission (super-admin only, non-system permissions)."""
    return await service.update_permission(
        db, current_user, permission_key, permission_update.model_dump(exclude_unset=True)
    )


# ============================================================================
# Module Routes
# ============================================================================

@router.get("/modules", response_model=List[ModuleResponse])
async def list_modules(
    tier: Optional[Literal["core", "standard", "premium"]] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List active modules, core first."""
    return await service.list_modules(db, tier)
