"""
Template CRUD and template application.

Applying a template reuses the bulk grant path for its permissions and the
module grant path for each module. Item failures are collected and never
stop the remaining items. One `apply_template` audit record describes the
whole application; template create, update and delete are audited too.
"""
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.errors import (
    AuthorizationError,
    ConflictError,
    EntitlementError,
    NotFoundError,
    ValidationError,
)
from entitlements.features.audit.models import ChangeType
from entitlements.features.audit.service import NO_META, RequestMeta, record_change
from entitlements.features.catalog.models import Module, Permission, PermissionTemplate
from entitlements.features.grants.store import snapshot
from entitlements.features.permissions.service import apply_module_grant, bulk_grant_permissions
from entitlements.features.users.dependencies import (
    ensure_company_scope,
    get_company,
    get_company_member,
    require_admin,
)
from entitlements.features.users.models import User
from entitlements.utils import get_logger


log = get_logger(__name__)


EDITABLE_FIELDS = ("template_name", "display_name", "description", "target_role", "data_permissions", "modules")


async def list_templates(db: AsyncSession, target_role: Optional[str] = None) -> List[PermissionTemplate]:
    """System templates first, then by target role and display name."""
    stmt = select(PermissionTemplate)
    if target_role:
        stmt = stmt.where(PermissionTemplate.target_role == target_role)
    templates = (await db.execute(stmt)).scalars().all()
    return sorted(
        templates,
        key=lambda t: (not t.is_system_template, t.target_role or "", t.display_name),
    )


async def get_template(db: AsyncSession, template_id: str) -> PermissionTemplate:
    template = await db.scalar(select(PermissionTemplate).where(PermissionTemplate.id == template_id))
    if template is None:
        raise NotFoundError("Template not found")
    return template


async def _validate_contents(db: AsyncSession, permission_keys: Sequence[str], module_ids: Sequence[str]) -> None:
    """Every key must exist in the catalog and every module must be active."""
    details: Dict[str, Any] = {}

    if permission_keys:
        result = await db.execute(
            select(Permission.permission_key).where(Permission.permission_key.in_(permission_keys))
        )
        known = set(result.scalars().all())
        unknown = [key for key in permission_keys if key not in known]
        if unknown:
            details["missing_keys"] = unknown

    if module_ids:
        result = await db.execute(
            select(Module.id).where(Module.id.in_(module_ids), Module.is_active.is_(True))
        )
        active = set(result.scalars().all())
        invalid = [module_id for module_id in module_ids if module_id not in active]
        if invalid:
            details["invalid_modules"] = invalid

    if details:
        raise ValidationError("Template references unknown permissions or modules", details)


async def _ensure_unique_name(db: AsyncSession, template_name: str, exclude_id: Optional[str] = None) -> None:
    stmt = select(PermissionTemplate.id).where(PermissionTemplate.template_name == template_name)
    if exclude_id:
        stmt = stmt.where(PermissionTemplate.id != exclude_id)
    if await db.scalar(stmt):
        raise ConflictError("Template with this name already exists", {"template_name": template_name})


def _ensure_editable(actor: User, template: PermissionTemplate) -> None:
    if template.is_system_template:
        raise ConflictError("System templates cannot be modified")
    if not actor.is_super_admin and template.created_by != actor.id:
        raise AuthorizationError("Only the template's creator can modify it")


async def create_template(
    db: AsyncSession,
    actor: User,
    data: Dict[str, Any],
    meta: RequestMeta = NO_META,
) -> PermissionTemplate:
    require_admin(actor)
    await _ensure_unique_name(db, data["template_name"])
    await _validate_contents(db, data.get("data_permissions") or [], data.get("modules") or [])

    template = PermissionTemplate(
        template_name=data["template_name"],
        display_name=data["display_name"],
        description=data.get("description"),
        target_role=data.get("target_role"),
        data_permissions=list(data.get("data_permissions") or []),
        modules=list(data.get("modules") or []),
        is_system_template=False,
        created_by=actor.id,
    )
    db.add(template)
    await db.flush()
    await db.refresh(template)

    await record_change(
        db,
        actor_id=actor.id,
        change_type=ChangeType.CREATE_TEMPLATE,
        company_id=actor.company_id,
        template_id=template.id,
        new_value=snapshot(template, EDITABLE_FIELDS),
        meta=meta,
    )
    log.info(f"Template {template.template_name} created by {actor.id}")
    return template


async def update_template(
    db: AsyncSession,
    actor: User,
    template_id: str,
    changes: Dict[str, Any],
    meta: RequestMeta = NO_META,
) -> PermissionTemplate:
    require_admin(actor)
    template = await get_template(db, template_id)
    _ensure_editable(actor, template)

    if changes.get("template_name") and changes["template_name"] != template.template_name:
        await _ensure_unique_name(db, changes["template_name"], exclude_id=template.id)
    if "data_permissions" in changes or "modules" in changes:
        await _validate_contents(
            db,
            changes.get("data_permissions") or [],
            changes.get("modules") or [],
        )

    before = snapshot(template, EDITABLE_FIELDS)
    for field in EDITABLE_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field in ("data_permissions", "modules"):
            value = list(value or [])
        elif value is None and field in ("template_name", "display_name"):
            continue
        setattr(template, field, value)

    await db.flush()
    await db.refresh(template)

    await record_change(
        db,
        actor_id=actor.id,
        change_type=ChangeType.UPDATE_TEMPLATE,
        company_id=actor.company_id,
        template_id=template.id,
        old_value=before,
        new_value=snapshot(template, EDITABLE_FIELDS),
        meta=meta,
    )
    log.info(f"Template {template.template_name} updated by {actor.id}")
    return template


async def delete_template(
    db: AsyncSession,
    actor: User,
    template_id: str,
    meta: RequestMeta = NO_META,
) -> None:
    require_admin(actor)
    template = await get_template(db, template_id)
    _ensure_editable(actor, template)
    before = snapshot(template, EDITABLE_FIELDS)

    await db.delete(template)
    await db.flush()

    await record_change(
        db,
        actor_id=actor.id,
        change_type=ChangeType.DELETE_TEMPLATE,
        company_id=actor.company_id,
        template_id=template_id,
        old_value=before,
        meta=meta,
    )
    log.info(f"Template {template.template_name} deleted by {actor.id}")


async def apply_template(
    db: AsyncSession,
    actor: User,
    template_id: str,
    *,
    user_id: str,
    company_id: str,
    meta: RequestMeta = NO_META,
) -> Dict[str, Any]:
    """
    Grant a template's permissions and modules to a user.

    Returns:
        {"permissions_granted": [...], "modules_granted": [...], "errors": [...]}
        where each error carries `type` = "data_permission" or "module".
    """
    ensure_company_scope(actor, company_id)
    await get_company(db, company_id)
    target = await get_company_member(db, user_id, company_id)
    template = await get_template(db, template_id)
    reason = f"Applied template: {template.display_name}"

    errors: List[Dict[str, Any]] = []
    permission_snapshots: List[Dict[str, Any]] = []
    permissions_granted: List[str] = []

    if template.data_permissions:
        bulk = await bulk_grant_permissions(
            db, actor, target.id,
            company_id=company_id,
            items=[{"permission_key": key} for key in template.data_permissions],
            reason=reason,
            meta=meta,
            audit=False,
        )
        for result in bulk["results"]:
            permissions_granted.append(result["permission_key"])
            permission_snapshots.append({
                "permission_key": result["permission_key"],
                "old_value": result["old_value"],
                "new_value": result["new_value"],
            })
        errors.extend({"type": "data_permission", **error} for error in bulk["errors"])

    module_snapshots: List[Dict[str, Any]] = []
    modules_granted: List[str] = []
    for module_id in template.modules or []:
        try:
            outcome = await apply_module_grant(
                db, actor, target, company_id, module_id,
                restrictions=None, expires_at=None, meta=meta, audit=False,
            )
        except EntitlementError as e:
            errors.append({"type": "module", "module_id": module_id, **e.to_dict()})
            continue
        modules_granted.append(module_id)
        module_snapshots.append({
            "module_id": module_id,
            "old_value": outcome["old_value"],
            "new_value": outcome["new_value"],
        })

    await record_change(
        db,
        actor_id=actor.id,
        change_type=ChangeType.APPLY_TEMPLATE,
        company_id=company_id,
        affected_user_id=target.id,
        template_id=template.id,
        new_value={
            "template_name": template.template_name,
            "permissions": permission_snapshots,
            "modules": module_snapshots,
            "errors": errors,
        },
        reason=reason,
        meta=meta,
    )

    log.info(
        f"Template {template.template_name} applied to {target.id}: "
        f"{len(permissions_granted)} permissions, {len(modules_granted)} modules, {len(errors)} errors"
    )
    return {
        "template_id": template.id,
        "user_id": target.id,
        "company_id": company_id,
        "permissions_granted": permissions_granted,
        "modules_granted": modules_granted,
        "errors": errors,
    }
