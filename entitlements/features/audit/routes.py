"""
Audit log API routes.
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core import config
from entitlements.core.database.engine import get_db
from entitlements.features.audit.schemas import AuditLogListResponse
from entitlements.features.audit.service import query_audit_log
from entitlements.features.users.dependencies import get_current_user
from entitlements.features.users.models import User


router = APIRouter()


@router.get("/audit-logs", response_model=AuditLogListResponse)
async def get_audit_log(
    actor_id: Optional[str] = None,
    affected_user_id: Optional[str] = None,
    company_id: Optional[str] = None,
    change_type: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(config.AUDIT_DEFAULT_PAGE_SIZE, ge=1, le=config.AUDIT_MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List audit entries, newest first (admin: own company only)."""
    return await query_audit_log(
        db,
        current_user,
        actor_id=actor_id,
        affected_user_id=affected_user_id,
        company_id=company_id,
        change_type=change_type,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
