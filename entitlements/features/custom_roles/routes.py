"""
Custom role API routes.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.database.engine import get_db
from entitlements.core.errors import ValidationError
from entitlements.features.audit.service import RequestMeta
from entitlements.features.custom_roles import service
from entitlements.features.custom_roles.schemas import CustomRoleCreate, CustomRoleResponse, CustomRoleUpdate
from entitlements.features.users.dependencies import get_current_user
from entitlements.features.users.models import User


router = APIRouter()


def _company_or_own(current_user: User, company_id: Optional[str]) -> str:
    company_id = company_id or current_user.company_id
    if company_id is None:
        raise ValidationError("company_id is required")
    return company_id


@router.get("/custom-roles", response_model=List[CustomRoleResponse])
async def list_custom_roles(
    company_id: Optional[str] = None,
    is_active: Optional[bool] = True,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List a company's custom roles (defaults to the caller's company)."""
    return await service.list_custom_roles(db, current_user, _company_or_own(current_user, company_id), is_active)


@router.post("/custom-roles", response_model=CustomRoleResponse, status_code=status.HTTP_201_CREATED)
async def create_custom_role(
    role: CustomRoleCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a custom role (admin only)."""
    company_id = _company_or_own(current_user, role.company_id)
    return await service.create_custom_role(
        db, current_user, company_id, role.model_dump(exclude={"company_id"}), meta=RequestMeta.from_request(request)
    )


@router.put("/custom-roles/{role_id}", response_model=CustomRoleResponse)
async def update_custom_role(
    role_id: str,
    role_update: CustomRoleUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return await service.update_custom_role(
        db, current_user, role_id, role_update.model_dump(exclude_unset=True), meta=RequestMeta.from_request(request)
    )


@router.delete("/custom-roles/{role_id}", response_model=CustomRoleResponse)
async def delete_custom_role(
    role_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Deactivate a custom role."""
    return await service.delete_custom_role(db, current_user, role_id, meta=RequestMeta.from_request(request))
