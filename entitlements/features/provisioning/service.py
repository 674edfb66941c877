"""
Module provisioning per company and the company cost report.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.errors import ConflictError, NotFoundError, ValidationError
from entitlements.features.audit.models import ChangeType
from entitlements.features.audit.service import NO_META, RequestMeta, record_change
from entitlements.features.catalog.models import Module, TIER_ORDER
from entitlements.features.grants.models import CompanyModule
from entitlements.features.grants.store import active_module_grant_count, snapshot, upsert
from entitlements.features.provisioning.pricing import (
    effective_prices,
    licensing_variance,
    monthly_cost,
    summarize,
)
from entitlements.features.users.dependencies import ensure_company_scope, get_company, require_super_admin
from entitlements.features.users.models import User
from entitlements.utils import get_logger, utcnow


log = get_logger(__name__)


PRICING_TIERS = ("standard", "custom", "enterprise")

PROVISION_FIELDS = (
    "is_enabled", "pricing_tier", "monthly_price", "per_user_price",
    "users_licensed", "billing_notes", "enabled_by", "enabled_at",
)


async def provision_module(
    db: AsyncSession,
    actor: User,
    company_id: str,
    module_id: str,
    *,
    is_enabled: bool = True,
    pricing_tier: str = "standard",
    monthly_price: Optional[Decimal] = None,
    per_user_price: Optional[Decimal] = None,
    users_licensed: int = 0,
    billing_notes: Optional[str] = None,
    meta: RequestMeta = NO_META,
) -> CompanyModule:
    """
    Enable or disable a module for a company and set its pricing (super-admin).

    Disabling leaves user module grants in place; they take effect again
    as soon as the module is re-enabled.
    """
    require_super_admin(actor)
    await get_company(db, company_id)

    module = await db.scalar(select(Module).where(Module.id == module_id))
    if module is None:
        raise NotFoundError("Module not found", {"module_id": module_id})
    if is_enabled and not module.is_active:
        raise ValidationError("Module is not active", {"module_id": module_id})
    if module.is_core and not is_enabled:
        raise ConflictError("Core modules are always enabled", {"module_id": module_id})

    if pricing_tier not in PRICING_TIERS:
        raise ValidationError("Invalid pricing tier", {"pricing_tier": pricing_tier, "allowed": list(PRICING_TIERS)})
    for name, price in (("monthly_price", monthly_price), ("per_user_price", per_user_price)):
        if price is not None and price < 0:
            raise ValidationError(f"{name} must not be negative")
    if users_licensed < 0:
        raise ValidationError("users_licensed must not be negative")

    existing = await db.scalar(
        select(CompanyModule).where(
            CompanyModule.company_id == company_id,
            CompanyModule.module_id == module.id,
        )
    )
    before = snapshot(existing, PROVISION_FIELDS)

    update_columns = ["is_enabled", "pricing_tier", "monthly_price", "per_user_price", "users_licensed", "billing_notes"]
    if is_enabled:
        # Keep who/when of the last enable through a disable
        update_columns += ["enabled_by", "enabled_at"]

    row = await upsert(
        db,
        CompanyModule,
        ("company_id", "module_id"),
        {
            "company_id": company_id,
            "module_id": module.id,
            "is_enabled": is_enabled,
            "pricing_tier": pricing_tier,
            "monthly_price": monthly_price,
            "per_user_price": per_user_price,
            "users_licensed": users_licensed,
            "billing_notes": billing_notes,
            "enabled_by": actor.id if is_enabled else None,
            "enabled_at": utcnow() if is_enabled else None,
        },
        update_columns,
    )

    await record_change(
        db,
        actor_id=actor.id,
        change_type=ChangeType.PROVISION_MODULE if is_enabled else ChangeType.DEPROVISION_MODULE,
        company_id=company_id,
        module_id=module.id,
        old_value=before,
        new_value=snapshot(row, PROVISION_FIELDS),
        reason=billing_notes,
        meta=meta,
    )

    log.info(f"Module {module.name} {'enabled' if is_enabled else 'disabled'} for company {company_id}")
    return row


async def company_module_costs(db: AsyncSession, actor: User, company_id: str) -> Dict[str, Any]:
    """
    Per-module and total monthly cost of a company's enabled modules.

    `licensed_monthly_cost` prices the licensed seat count,
    `actual_monthly_cost` prices the users who currently hold an active grant.
    """
    ensure_company_scope(actor, company_id)
    await get_company(db, company_id)

    result = await db.execute(
        select(CompanyModule, Module)
        .join(Module, Module.id == CompanyModule.module_id)
        .where(CompanyModule.company_id == company_id, CompanyModule.is_enabled.is_(True))
    )
    pairs = sorted(result.all(), key=lambda pair: (TIER_ORDER.get(pair[1].tier, 99), pair[1].name))

    rows: List[Dict[str, Any]] = []
    for provisioning, module in pairs:
        base, per_user = effective_prices(module, provisioning)
        users_with_access = await active_module_grant_count(db, company_id, module.id)
        rows.append({
            "module_id": module.id,
            "module_name": module.name,
            "tier": module.tier,
            "pricing_tier": provisioning.pricing_tier,
            "monthly_price": base,
            "per_user_price": per_user,
            "users_licensed": provisioning.users_licensed,
            "users_with_access": users_with_access,
            "licensed_monthly_cost": monthly_cost(module, provisioning, provisioning.users_licensed),
            "actual_monthly_cost": monthly_cost(module, provisioning, users_with_access),
            "variance": licensing_variance(provisioning.users_licensed, users_with_access),
        })

    return {"company_id": company_id, "modules": rows, "summary": summarize(rows)}
