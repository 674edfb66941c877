"""
Audit log model.
"""
import enum
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, JSON, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from entitlements.core.database.base import Base, TimestampMixin, generate_ulid


class ChangeType(str, enum.Enum):
    GRANT_DATA_PERMISSION = "grant_data_permission"
    REVOKE_DATA_PERMISSION = "revoke_data_permission"
    GRANT_MODULE = "grant_module"
    REVOKE_MODULE = "revoke_module"
    PROVISION_MODULE = "provision_module"
    DEPROVISION_MODULE = "deprovision_module"
    APPLY_TEMPLATE = "apply_template"
    ASSIGN_CUSTOM_ROLE = "assign_custom_role"
    CREATE_CUSTOM_ROLE = "create_custom_role"
    UPDATE_CUSTOM_ROLE = "update_custom_role"
    DEACTIVATE_CUSTOM_ROLE = "deactivate_custom_role"
    CREATE_TEMPLATE = "create_template"
    UPDATE_TEMPLATE = "update_template"
    DELETE_TEMPLATE = "delete_template"


class AuditLog(Base, TimestampMixin):
    """
    One row per entitlement change. Rows are never updated or deleted.

    Tracks who did what, to whom, in which company, when, and from where.
    """
    __tablename__ = "audit_logs"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Who / whom / where. Plain ids so history survives deletes.
    actor_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    affected_user_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    company_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # What
    change_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    permission_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    module_id: Mapped[str | None] = mapped_column(String(26), nullable=True)
    template_id: Mapped[str | None] = mapped_column(String(26), nullable=True)
    old_value: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_value: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # When. Set in Python so ordering within one request is stable.
    performed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    # Context
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, actor_id={self.actor_id}, change_type={self.change_type})>"
