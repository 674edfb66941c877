"""
Audit log writer and reader.

`record_change` is the only code path that inserts audit rows. It adds the
row to the caller's session, so the record commits or rolls back together
with the grant change it describes.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core import config
from entitlements.core.errors import NotFoundError
from entitlements.features.audit.models import AuditLog, ChangeType
from entitlements.features.users.dependencies import require_admin
from entitlements.features.users.models import User
from entitlements.utils import as_utc, get_logger, utcnow


log = get_logger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    """Where a change came from."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestMeta":
        return cls(
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )


NO_META = RequestMeta()


async def record_change(
    db: AsyncSession,
    *,
    actor_id: Optional[str],
    change_type: ChangeType,
    company_id: Optional[str] = None,
    affected_user_id: Optional[str] = None,
    permission_key: Optional[str] = None,
    module_id: Optional[str] = None,
    template_id: Optional[str] = None,
    old_value: Optional[Dict[str, Any]] = None,
    new_value: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
    meta: RequestMeta = NO_META,
) -> AuditLog:
    """
    Create an audit log entry in the current transaction.

    Args:
        db: Database session carrying the change being audited
        actor_id: User performing the change
        change_type: What kind of change this is
        company_id: Company the change is scoped to
        affected_user_id: User whose entitlements changed, if any
        old_value / new_value: JSON snapshots before and after the change
        meta: Client IP address and user agent

    Returns:
        Created AuditLog object
    """
    entry = AuditLog(
        actor_id=actor_id,
        affected_user_id=affected_user_id,
        company_id=company_id,
        change_type=ChangeType(change_type).value,
        permission_key=permission_key,
        module_id=module_id,
        template_id=template_id,
        old_value=old_value,
        new_value=new_value,
        reason=reason,
        performed_at=utcnow(),
        ip_address=meta.ip_address,
        user_agent=meta.user_agent[:255] if meta.user_agent else None,
    )
    db.add(entry)
    await db.flush()

    log.info(
        f"Audit: {entry.change_type} by {actor_id} "
        f"(user={affected_user_id}, company={company_id}, permission={permission_key}, module={module_id})"
    )
    return entry


async def query_audit_log(
    db: AsyncSession,
    actor: User,
    *,
    actor_id: Optional[str] = None,
    affected_user_id: Optional[str] = None,
    company_id: Optional[str] = None,
    change_type: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = config.AUDIT_DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> Dict[str, Any]:
    """
    Page through audit entries, newest first.

    Admins only ever see their own company; asking for another company
    answers as if it did not exist.
    """
    require_admin(actor)
    if not actor.is_super_admin:
        if actor.company_id is None:
            raise NotFoundError("Company not found")
        if company_id is not None and company_id != actor.company_id:
            raise NotFoundError("Company not found")
        company_id = actor.company_id

    limit = max(1, min(limit, config.AUDIT_MAX_PAGE_SIZE))
    offset = max(0, offset)

    filters = []
    if actor_id:
        filters.append(AuditLog.actor_id == actor_id)
    if affected_user_id:
        filters.append(AuditLog.affected_user_id == affected_user_id)
    if company_id is not None:
        filters.append(AuditLog.company_id == company_id)
    if change_type:
        filters.append(AuditLog.change_type == change_type)
    if since:
        filters.append(AuditLog.performed_at >= as_utc(since))
    if until:
        filters.append(AuditLog.performed_at <= as_utc(until))

    total = await db.scalar(select(func.count(AuditLog.id)).where(*filters))
    result = await db.execute(
        select(AuditLog)
        .where(*filters)
        .order_by(AuditLog.performed_at.desc(), AuditLog.id.desc())
        .offset(offset)
        .limit(limit)
    )
    entries = list(result.scalars().all())
    total = int(total or 0)

    return {
        "entries": entries,
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(entries) < total,
    }
