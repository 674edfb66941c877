"""
Pydantic schemas for the audit log API.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict


class AuditLogResponse(BaseModel):
    """Schema for one audit entry."""
    id: str
    actor_id: Optional[str]
    affected_user_id: Optional[str]
    company_id: Optional[str]
    change_type: str
    permission_key: Optional[str]
    module_id: Optional[str]
    template_id: Optional[str]
    old_value: Optional[Dict[str, Any]]
    new_value: Optional[Dict[str, Any]]
    reason: Optional[str]
    performed_at: datetime
    ip_address: Optional[str]
    user_agent: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for a page of audit entries."""
    entries: List[AuditLogResponse]
    total: int
    limit: int
    offset: int
    has_more: bool
