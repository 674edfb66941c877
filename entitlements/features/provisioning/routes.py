"""
Company module provisioning API routes.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.database.engine import get_db
from entitlements.features.audit.service import RequestMeta
from entitlements.features.provisioning.schemas import (
    CompanyModuleCostsResponse,
    CompanyModuleResponse,
    ProvisionModuleRequest,
)
from entitlements.features.provisioning.service import company_module_costs, provision_module
from entitlements.features.users.dependencies import get_current_user
from entitlements.features.users.models import User


router = APIRouter()


@router.post("/companies/{company_id}/modules/provision", response_model=CompanyModuleResponse)
async def provision_company_module(
    company_id: str,
    body: ProvisionModuleRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Enable or disable a module for a company and set its pricing (super-admin only)."""
    return await provision_module(
        db,
        current_user,
        company_id,
        body.module_id,
        is_enabled=body.is_enabled,
        pricing_tier=body.pricing_tier,
        monthly_price=body.monthly_price,
        per_user_price=body.per_user_price,
        users_licensed=body.users_licensed,
        billing_notes=body.billing_notes,
        meta=RequestMeta.from_request(request),
    )


@router.get("/companies/{company_id}/modules/costs", response_model=CompanyModuleCostsResponse)
async def get_company_module_costs(
    company_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Monthly cost per enabled module, licensed vs. actual usage."""
    return await company_module_costs(db, current_user, company_id)
