"""
Permission template API routes.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.database.engine import get_db
from entitlements.features.audit.service import RequestMeta
from entitlements.features.templates import service
from entitlements.features.templates.schemas import (
    ApplyTemplateRequest,
    ApplyTemplateResponse,
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
)
from entitlements.features.users.dependencies import get_current_user, require_admin
from entitlements.features.users.models import User


router = APIRouter()


@router.get("/templates", response_model=List[TemplateResponse])
async def list_templates(
    target_role: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List templates, system templates first."""
    require_admin(current_user)
    return await service.list_templates(db, target_role)


@router.post("/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    template: TemplateCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a template (admin only)."""
    return await service.create_template(
        db, current_user, template.model_dump(), meta=RequestMeta.from_request(request)
    )


@router.get("/templates/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    require_admin(current_user)
    return await service.get_template(db, template_id)


@router.put("/templates/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: str,
    template_update: TemplateUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Update a non-system template."""
    return await service.update_template(
        db, current_user, template_id, template_update.model_dump(exclude_unset=True),
        meta=RequestMeta.from_request(request),
    )


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Delete a non-system template."""
    await service.delete_template(db, current_user, template_id, meta=RequestMeta.from_request(request))
    return None


@router.post("/templates/{template_id}/apply", response_model=ApplyTemplateResponse)
async def apply_template(
    template_id: str,
    body: ApplyTemplateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Grant a template's permissions and modules to a user."""
    return await service.apply_template(
        db,
        current_user,
        template_id,
        user_id=body.user_id,
        company_id=body.company_id,
        meta=RequestMeta.from_request(request),
    )
