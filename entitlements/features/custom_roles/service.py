"""
Custom role management, scoped to one company and audited.

Deleting a custom role only deactivates it; users that still point at an
inactive role fall back to their standard role defaults.
"""
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.errors import ConflictError, NotFoundError, ValidationError
from entitlements.features.audit.models import ChangeType
from entitlements.features.audit.service import NO_META, RequestMeta, record_change
from entitlements.features.catalog.models import Permission
from entitlements.features.grants.models import CustomRole
from entitlements.features.grants.store import snapshot
from entitlements.features.users.dependencies import ensure_company_scope, get_company, require_admin
from entitlements.features.users.models import User
from entitlements.utils import get_logger


log = get_logger(__name__)


ROLE_FIELDS = ("name", "description", "permissions", "replaces_role_defaults", "is_active")


async def _validate_permissions(db: AsyncSession, permission_keys: Sequence[str]) -> List[str]:
    keys = list(dict.fromkeys(permission_keys))
    if not keys:
        return keys
    result = await db.execute(select(Permission.permission_key).where(Permission.permission_key.in_(keys)))
    known = set(result.scalars().all())
    missing = [key for key in keys if key not in known]
    if missing:
        raise ValidationError("Unknown permissions", {"missing_keys": missing})
    return keys


async def _ensure_unique_name(db: AsyncSession, company_id: str, name: str, exclude_id: Optional[str] = None) -> None:
    stmt = select(CustomRole.id).where(CustomRole.company_id == company_id, CustomRole.name == name)
    if exclude_id:
        stmt = stmt.where(CustomRole.id != exclude_id)
    if await db.scalar(stmt):
        raise ConflictError("Custom role with this name already exists", {"name": name})


async def get_custom_role(db: AsyncSession, actor: User, role_id: str) -> CustomRole:
    require_admin(actor)
    role = await db.scalar(select(CustomRole).where(CustomRole.id == role_id))
    if role is None or (not actor.is_super_admin and role.company_id != actor.company_id):
        raise NotFoundError("Custom role not found")
    return role


async def list_custom_roles(
    db: AsyncSession,
    actor: User,
    company_id: str,
    is_active: Optional[bool] = True,
) -> List[CustomRole]:
    ensure_company_scope(actor, company_id)
    await get_company(db, company_id)

    stmt = select(CustomRole).where(CustomRole.company_id == company_id).order_by(CustomRole.name)
    if is_active is not None:
        stmt = stmt.where(CustomRole.is_active.is_(is_active))
    return list((await db.execute(stmt)).scalars().all())


async def create_custom_role(
    db: AsyncSession,
    actor: User,
    company_id: str,
    data: Dict[str, Any],
    meta: RequestMeta = NO_META,
) -> CustomRole:
    ensure_company_scope(actor, company_id)
    await get_company(db, company_id)
    await _ensure_unique_name(db, company_id, data["name"])

    role = CustomRole(
        company_id=company_id,
        name=data["name"],
        description=data.get("description"),
        permissions=await _validate_permissions(db, data.get("permissions") or []),
        replaces_role_defaults=bool(data.get("replaces_role_defaults", False)),
        is_active=True,
        created_by=actor.id,
    )
    db.add(role)
    await db.flush()
    await db.refresh(role)

    await record_change(
        db,
        actor_id=actor.id,
        change_type=ChangeType.CREATE_CUSTOM_ROLE,
        company_id=company_id,
        new_value={"id": role.id, **snapshot(role, ROLE_FIELDS)},
        meta=meta,
    )
    log.info(f"Custom role {role.name} created in company {company_id}")
    return role


async def update_custom_role(
    db: AsyncSession,
    actor: User,
    role_id: str,
    changes: Dict[str, Any],
    meta: RequestMeta = NO_META,
) -> CustomRole:
    role = await get_custom_role(db, actor, role_id)
    before = snapshot(role, ROLE_FIELDS)

    if changes.get("name") and changes["name"] != role.name:
        await _ensure_unique_name(db, role.company_id, changes["name"], exclude_id=role.id)
        role.name = changes["name"]
    if "description" in changes:
        role.description = changes["description"]
    if changes.get("permissions") is not None:
        role.permissions = await _validate_permissions(db, changes["permissions"])
    if changes.get("replaces_role_defaults") is not None:
        role.replaces_role_defaults = changes["replaces_role_defaults"]
    if changes.get("is_active") is not None:
        role.is_active = changes["is_active"]

    await db.flush()
    await db.refresh(role)

    await record_change(
        db,
        actor_id=actor.id,
        change_type=ChangeType.UPDATE_CUSTOM_ROLE,
        company_id=role.company_id,
        old_value=before,
        new_value=snapshot(role, ROLE_FIELDS),
        meta=meta,
    )
    log.info(f"Custom role {role.id} updated")
    return role


async def delete_custom_role(
    db: AsyncSession,
    actor: User,
    role_id: str,
    meta: RequestMeta = NO_META,
) -> CustomRole:
    """Soft delete: the role stops applying but stays for history."""
    role = await get_custom_role(db, actor, role_id)
    before = snapshot(role, ROLE_FIELDS)

    role.is_active = False
    await db.flush()
    await db.refresh(role)

    await record_change(
        db,
        actor_id=actor.id,
        change_type=ChangeType.DEACTIVATE_CUSTOM_ROLE,
        company_id=role.company_id,
        old_value=before,
        new_value=snapshot(role, ROLE_FIELDS),
        meta=meta,
    )
    log.info(f"Custom role {role.id} deactivated")
    return role
