"""
Grant/revoke orchestrator.

Every mutation follows the same order: authorize the actor, look up the
catalog entry and the target user, run the business checks, then upsert and
write the audit record. All checks run before the first write, so a
rejected item leaves the session untouched and batch callers can carry on
with the next item.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.errors import (
    ConflictError,
    DependencyError,
    EntitlementError,
    NotFoundError,
    ValidationError,
)
from entitlements.features.audit.models import ChangeType
from entitlements.features.audit.service import NO_META, RequestMeta, record_change
from entitlements.features.catalog.models import Module, ModuleTier, Permission, TIER_ORDER
from entitlements.features.catalog.service import validate_permission_key
from entitlements.features.grants.models import CompanyModule, CustomRole, UserDataPermission, UserModule
from entitlements.features.grants.store import (
    get_permission_by_key,
    granted_keys,
    not_expired,
    snapshot,
    upsert,
)
from entitlements.features.permissions.resolver import (
    EffectivePermission,
    has_permission,
    module_active_for,
    resolve,
)
from entitlements.features.permissions.validator import validate
from entitlements.features.provisioning.pricing import effective_prices
from entitlements.features.users.dependencies import (
    ensure_company_scope,
    get_company,
    get_company_member,
    get_visible_user,
)
from entitlements.features.users.models import User
from entitlements.utils import as_utc, get_logger, utcnow


log = get_logger(__name__)


DATA_GRANT_FIELDS = ("is_granted", "granted_by", "granted_at", "granted_reason", "expires_at")
MODULE_GRANT_FIELDS = ("is_enabled", "restrictions", "granted_by", "granted_at", "expires_at")


def future_expiry(expires_at: Optional[datetime]) -> Optional[datetime]:
    """Normalize an optional expiry to UTC; it must lie in the future."""
    expires_at = as_utc(expires_at)
    if expires_at is not None and expires_at <= utcnow():
        raise ValidationError("expires_at must be in the future", {"expires_at": expires_at.isoformat()})
    return expires_at


# ============================================================================
# Reads
# ============================================================================

def _read_company(actor: User, target: User, company_id: Optional[str]) -> str:
    """Company a read is scoped to: the explicit one, else the target's own."""
    company_id = company_id or target.company_id
    if company_id is None:
        raise ValidationError("company_id is required")
    if not actor.is_super_admin and company_id != actor.company_id:
        raise NotFoundError("Company not found")
    return company_id


async def list_user_permissions(
    db: AsyncSession,
    actor: User,
    user_id: str,
    company_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Non-expired data grants (and denials) plus module grants of one user."""
    target = await get_visible_user(db, actor, user_id)
    company_id = _read_company(actor, target, company_id)
    await get_company(db, company_id)

    data_rows = await db.execute(
        select(UserDataPermission, Permission)
        .join(Permission, Permission.id == UserDataPermission.permission_id)
        .where(
            UserDataPermission.user_id == target.id,
            UserDataPermission.company_id == company_id,
            not_expired(UserDataPermission.expires_at),
        )
        .order_by(Permission.permission_group, Permission.permission_key)
    )
    data_permissions = [
        {
            "permission_key": permission.permission_key,
            "permission_name": permission.permission_name,
            "permission_group": permission.permission_group,
            "is_granted": grant.is_granted,
            "granted_by": grant.granted_by,
            "granted_at": grant.granted_at,
            "granted_reason": grant.granted_reason,
            "expires_at": grant.expires_at,
        }
        for grant, permission in data_rows.all()
    ]

    module_rows = await db.execute(
        select(UserModule, Module)
        .join(Module, Module.id == UserModule.module_id)
        .where(
            UserModule.user_id == target.id,
            UserModule.company_id == company_id,
            not_expired(UserModule.expires_at),
        )
        .order_by(Module.name)
    )
    modules = [
        {
            "module_id": module.id,
            "module_name": module.name,
            "tier": module.tier,
            "is_enabled": grant.is_enabled,
            "restrictions": grant.restrictions or {},
            "granted_by": grant.granted_by,
            "granted_at": grant.granted_at,
            "expires_at": grant.expires_at,
        }
        for grant, module in module_rows.all()
    ]

    return {
        "user_id": target.id,
        "company_id": company_id,
        "data_permissions": data_permissions,
        "modules": modules,
    }


async def effective_permissions(
    db: AsyncSession,
    actor: User,
    user_id: str,
    company_id: Optional[str] = None,
) -> Dict[str, Any]:
    target = await get_visible_user(db, actor, user_id)
    company_id = _read_company(actor, target, company_id)
    resolved: List[EffectivePermission] = await resolve(db, target.id, company_id)
    return {
        "user_id": target.id,
        "company_id": company_id,
        "permissions": [entry.to_dict() for entry in resolved],
        "total": len(resolved),
    }


async def check_permission(
    db: AsyncSession,
    actor: User,
    user_id: str,
    permission_key: str,
    company_id: Optional[str] = None,
) -> Dict[str, Any]:
    target = await get_visible_user(db, actor, user_id)
    company_id = _read_company(actor, target, company_id)
    return {
        "user_id": target.id,
        "company_id": company_id,
        "permission_key": permission_key,
        "has_permission": await has_permission(db, target.id, company_id, permission_key),
    }


async def available_modules(
    db: AsyncSession,
    actor: User,
    user_id: str,
    company_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Every active module with the company's provisioning state and the user's
    grant, ordered by tier then name.

    `has_access` follows the resolver: core modules always, super-admins
    always, otherwise the company must have the module enabled and the user
    must hold an enabled, non-expired grant.
    """
    target = await get_visible_user(db, actor, user_id)
    company_id = _read_company(actor, target, company_id)
    await get_company(db, company_id)
    if not target.is_super_admin and target.company_id != company_id:
        raise NotFoundError("User not found in this company")

    modules = (await db.execute(select(Module).where(Module.is_active.is_(True)))).scalars().all()
    provisioning_by_module = {
        row.module_id: row
        for row in (await db.execute(
            select(CompanyModule).where(CompanyModule.company_id == company_id)
        )).scalars().all()
    }
    grants_by_module = {
        row.module_id: row
        for row in (await db.execute(
            select(UserModule).where(UserModule.user_id == target.id, UserModule.company_id == company_id)
        )).scalars().all()
    }

    now = utcnow()
    entries: List[Dict[str, Any]] = []
    for module in sorted(modules, key=lambda m: (TIER_ORDER.get(m.tier, 99), m.name)):
        provisioning = provisioning_by_module.get(module.id)
        grant = grants_by_module.get(module.id)
        company_provisioned = provisioning is not None and provisioning.is_enabled
        expires_at = as_utc(grant.expires_at) if grant is not None else None
        user_has_access = (
            grant is not None and grant.is_enabled and (expires_at is None or expires_at > now)
        )
        monthly_price, per_user_price = effective_prices(module, provisioning)

        entries.append({
            "module_id": module.id,
            "module_name": module.name,
            "description": module.description,
            "tier": module.tier,
            "category": module.category,
            "included_permissions": list(module.included_permissions or []),
            "company_provisioned": company_provisioned,
            "pricing_tier": provisioning.pricing_tier if provisioning is not None else None,
            "users_licensed": provisioning.users_licensed if provisioning is not None else None,
            "monthly_price": monthly_price,
            "per_user_price": per_user_price,
            "user_has_access": user_has_access,
            "granted_at": grant.granted_at if grant is not None else None,
            "restrictions": (grant.restrictions or {}) if grant is not None else {},
            "expires_at": expires_at,
            "has_access": target.is_super_admin or module_active_for(
                module, company_provisioned, user_has_access
            ),
        })

    return {
        "user_id": target.id,
        "company_id": company_id,
        "role": target.role,
        "modules": entries,
        "summary": {
            "total_modules": len(entries),
            "modules_with_access": sum(1 for e in entries if e["has_access"]),
            "company_provisioned": sum(1 for e in entries if e["company_provisioned"]),
            "core_modules": sum(1 for e in entries if e["tier"] == ModuleTier.CORE.value),
        },
    }


# ============================================================================
# Data permission grants
# ============================================================================

async def _apply_data_grant(
    db: AsyncSession,
    actor: User,
    target: User,
    company_id: str,
    permission_key: str,
    *,
    is_granted: bool,
    reason: Optional[str],
    expires_at: Optional[datetime],
    meta: RequestMeta,
    audit: bool,
) -> Dict[str, Any]:
    """Checks and writes one grant for a user already known to be in the company."""
    validate_permission_key(permission_key)
    permission = await get_permission_by_key(db, permission_key)
    if permission is None:
        raise ValidationError("Permission not found", {"permission_key": permission_key})
    expires_at = future_expiry(expires_at)

    if is_granted:
        check = validate(permission, await granted_keys(db, target.id, company_id))
        if not check.ok:
            log.info(f"Grant of {permission_key} to {target.id} blocked, missing {check.missing}")
            raise DependencyError(permission_key, check.missing)

    existing = await db.scalar(
        select(UserDataPermission).where(
            UserDataPermission.user_id == target.id,
            UserDataPermission.permission_id == permission.id,
            UserDataPermission.company_id == company_id,
        )
    )
    before = snapshot(existing, DATA_GRANT_FIELDS)

    row = await upsert(
        db,
        UserDataPermission,
        ("user_id", "permission_id", "company_id"),
        {
            "user_id": target.id,
            "permission_id": permission.id,
            "company_id": company_id,
            "is_granted": is_granted,
            "granted_by": actor.id,
            "granted_at": utcnow(),
            "granted_reason": reason,
            "expires_at": expires_at,
        },
        DATA_GRANT_FIELDS,
    )
    after = snapshot(row, DATA_GRANT_FIELDS)

    if audit:
        await record_change(
            db,
            actor_id=actor.id,
            change_type=ChangeType.GRANT_DATA_PERMISSION if is_granted else ChangeType.REVOKE_DATA_PERMISSION,
            company_id=company_id,
            affected_user_id=target.id,
            permission_key=permission_key,
            old_value=before,
            new_value=after,
            reason=reason,
            meta=meta,
        )

    log.info(f"{'Granted' if is_granted else 'Revoked'} {permission_key} for user {target.id} in {company_id}")
    return {
        "permission_key": permission_key,
        "is_granted": is_granted,
        "old_value": before,
        "new_value": after,
    }


async def grant_permission(
    db: AsyncSession,
    actor: User,
    user_id: str,
    *,
    company_id: str,
    permission_key: str,
    is_granted: bool = True,
    reason: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    meta: RequestMeta = NO_META,
) -> Dict[str, Any]:
    """
    Grant (`is_granted=True`) or revoke (`is_granted=False`) one data permission.

    A revoke is stored as an explicit denial and never cascades to
    permissions that list this one as a prerequisite.

    Raises:
        ValidationError: bad key format, unknown permission, expiry in the past
        DependencyError: prerequisites missing (grants only)
        AuthorizationError / NotFoundError: actor scope, unknown company or user
    """
    validate_permission_key(permission_key)
    ensure_company_scope(actor, company_id)
    await get_company(db, company_id)
    target = await get_company_member(db, user_id, company_id)

    return await _apply_data_grant(
        db, actor, target, company_id, permission_key,
        is_granted=is_granted, reason=reason, expires_at=expires_at, meta=meta, audit=True,
    )


async def bulk_grant_permissions(
    db: AsyncSession,
    actor: User,
    user_id: str,
    *,
    company_id: str,
    items: Sequence[Dict[str, Any]],
    reason: Optional[str] = None,
    meta: RequestMeta = NO_META,
    audit: bool = True,
) -> Dict[str, Any]:
    """
    Grant or revoke several permissions in order.

    Items are processed one at a time, so an item may depend on a permission
    granted by an earlier item of the same batch. A failing item is reported
    in `errors` and the batch continues.

    Each item: {"permission_key": str, "is_granted"?: bool, "reason"?: str,
    "expires_at"?: datetime}. An item without its own reason uses `reason`.
    """
    ensure_company_scope(actor, company_id)
    await get_company(db, company_id)
    target = await get_company_member(db, user_id, company_id)

    results: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []

    for index, item in enumerate(items):
        permission_key = item.get("permission_key", "")
        try:
            outcome = await _apply_data_grant(
                db, actor, target, company_id, permission_key,
                is_granted=item.get("is_granted", True),
                reason=item.get("reason") or reason,
                expires_at=item.get("expires_at"),
                meta=meta,
                audit=audit,
            )
        except EntitlementError as e:
            errors.append({"index": index, "permission_key": permission_key, **e.to_dict()})
            continue
        status = "granted" if outcome["is_granted"] else "revoked"
        results.append({"index": index, "status": status, **outcome})

    log.info(
        f"Bulk grant for user {target.id} in {company_id}: "
        f"{len(results)} succeeded, {len(errors)} failed"
    )
    return {
        "results": results,
        "errors": errors,
        "summary": {
            "total_requested": len(items),
            "successful": len(results),
            "failed": len(errors),
        },
    }


# ============================================================================
# Module grants
# ============================================================================

async def _get_active_module(db: AsyncSession, module_id: str) -> Module:
    module = await db.scalar(select(Module).where(Module.id == module_id))
    if module is None:
        raise NotFoundError("Module not found", {"module_id": module_id})
    if not module.is_active:
        raise ValidationError("Module is not active", {"module_id": module_id})
    return module


async def apply_module_grant(
    db: AsyncSession,
    actor: User,
    target: User,
    company_id: str,
    module_id: str,
    *,
    restrictions: Optional[Dict[str, Any]],
    expires_at: Optional[datetime],
    meta: RequestMeta,
    audit: bool,
) -> Dict[str, Any]:
    """Checks and writes one module grant for a user already known to be in the company."""
    module = await _get_active_module(db, module_id)
    expires_at = future_expiry(expires_at)

    if not module.is_core:
        provisioning = await db.scalar(
            select(CompanyModule).where(
                CompanyModule.company_id == company_id,
                CompanyModule.module_id == module.id,
            )
        )
        provisioned = provisioning is not None and provisioning.is_enabled
        if not provisioned and not actor.is_super_admin:
            raise ConflictError(
                "Module is not provisioned for this company",
                {"module_id": module.id},
            )

    existing = await db.scalar(
        select(UserModule).where(
            UserModule.user_id == target.id,
            UserModule.module_id == module.id,
            UserModule.company_id == company_id,
        )
    )
    before = snapshot(existing, MODULE_GRANT_FIELDS)

    row = await upsert(
        db,
        UserModule,
        ("user_id", "module_id", "company_id"),
        {
            "user_id": target.id,
            "module_id": module.id,
            "company_id": company_id,
            "is_enabled": True,
            "restrictions": restrictions or {},
            "expires_at": expires_at,
            "granted_by": actor.id,
            "granted_at": utcnow(),
        },
        MODULE_GRANT_FIELDS,
    )
    after = snapshot(row, MODULE_GRANT_FIELDS)

    if audit:
        await record_change(
            db,
            actor_id=actor.id,
            change_type=ChangeType.GRANT_MODULE,
            company_id=company_id,
            affected_user_id=target.id,
            module_id=module.id,
            old_value=before,
            new_value=after,
            meta=meta,
        )

    log.info(f"Granted module {module.name} to user {target.id} in {company_id}")
    return {
        "module_id": module.id,
        "module_name": module.name,
        "old_value": before,
        "new_value": after,
    }


async def grant_module(
    db: AsyncSession,
    actor: User,
    user_id: str,
    *,
    company_id: str,
    module_id: str,
    restrictions: Optional[Dict[str, Any]] = None,
    expires_at: Optional[datetime] = None,
    meta: RequestMeta = NO_META,
) -> Dict[str, Any]:
    """
    Give a user access to a module inside a company.

    Non-core modules must be provisioned and enabled for the company first;
    super-admins may grant ahead of provisioning.
    """
    ensure_company_scope(actor, company_id)
    await get_company(db, company_id)
    target = await get_company_member(db, user_id, company_id)

    return await apply_module_grant(
        db, actor, target, company_id, module_id,
        restrictions=restrictions, expires_at=expires_at, meta=meta, audit=True,
    )


async def revoke_module(
    db: AsyncSession,
    actor: User,
    user_id: str,
    *,
    company_id: str,
    module_id: str,
    reason: Optional[str] = None,
    meta: RequestMeta = NO_META,
) -> Dict[str, Any]:
    """Disable a user's module grant; the row is kept for history."""
    ensure_company_scope(actor, company_id)
    await get_company(db, company_id)
    target = await get_company_member(db, user_id, company_id)

    grant = await db.scalar(
        select(UserModule).where(
            UserModule.user_id == target.id,
            UserModule.module_id == module_id,
            UserModule.company_id == company_id,
        )
    )
    if grant is None:
        raise NotFoundError("Module grant not found", {"module_id": module_id})

    before = snapshot(grant, MODULE_GRANT_FIELDS)
    grant.is_enabled = False
    await db.flush()
    after = snapshot(grant, MODULE_GRANT_FIELDS)

    await record_change(
        db,
        actor_id=actor.id,
        change_type=ChangeType.REVOKE_MODULE,
        company_id=company_id,
        affected_user_id=target.id,
        module_id=module_id,
        old_value=before,
        new_value=after,
        reason=reason,
        meta=meta,
    )

    log.info(f"Revoked module {module_id} from user {target.id} in {company_id}")
    return {"module_id": module_id, "old_value": before, "new_value": after}


# ============================================================================
# Custom role assignment
# ============================================================================

async def assign_custom_role(
    db: AsyncSession,
    actor: User,
    user_id: str,
    custom_role_id: Optional[str],
    meta: RequestMeta = NO_META,
) -> User:
    """Set or clear (`custom_role_id=None`) a user's custom role."""
    target = await get_visible_user(db, actor, user_id)
    if target.company_id is None:
        raise ValidationError("User does not belong to a company")
    ensure_company_scope(actor, target.company_id)

    if custom_role_id is not None:
        custom_role = await db.scalar(
            select(CustomRole).where(
                CustomRole.id == custom_role_id,
                CustomRole.company_id == target.company_id,
                CustomRole.is_active.is_(True),
            )
        )
        if custom_role is None:
            raise NotFoundError("Custom role not found")

    before = {"custom_role_id": target.custom_role_id}
    target.custom_role_id = custom_role_id
    await db.flush()
    await db.refresh(target)

    await record_change(
        db,
        actor_id=actor.id,
        change_type=ChangeType.ASSIGN_CUSTOM_ROLE,
        company_id=target.company_id,
        affected_user_id=target.id,
        old_value=before,
        new_value={"custom_role_id": custom_role_id},
        meta=meta,
    )

    log.info(f"Custom role of user {target.id} set to {custom_role_id}")
    return target
