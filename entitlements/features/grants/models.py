"""
Grant store models.

Each grant table is unique on its natural key so writes go through
INSERT ... ON CONFLICT DO UPDATE and a repeated grant never creates a
second row.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List
from sqlalchemy import String, ForeignKey, JSON, Text, Boolean, Integer, Numeric, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from entitlements.core.database.base import Base, TimestampMixin, generate_ulid


class UserDataPermission(Base, TimestampMixin):
    """
    A per-user grant (`is_granted=True`) or explicit denial (`is_granted=False`)
    of one permission inside one company.
    """
    __tablename__ = "user_data_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "permission_id", "company_id", name="uq_user_data_permission"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    permission_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    company_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    is_granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    granted_by: Mapped[str | None] = mapped_column(String(26), nullable=True)
    granted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    granted_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # NULL = never expires
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<UserDataPermission(user_id={self.user_id}, permission_id={self.permission_id}, "
            f"company_id={self.company_id}, granted={self.is_granted})>"
        )


class CompanyModule(Base, TimestampMixin):
    """
    Company-level module provisioning and per-company pricing.

    `monthly_price` / `per_user_price` of NULL mean "use the module default".
    """
    __tablename__ = "company_modules"
    __table_args__ = (
        UniqueConstraint("company_id", "module_id", name="uq_company_module"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    company_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    module_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("modules.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # standard | custom | enterprise
    pricing_tier: Mapped[str] = mapped_column(String(20), nullable=False, default="standard")
    monthly_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    per_user_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    users_licensed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    billing_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    enabled_by: Mapped[str | None] = mapped_column(String(26), nullable=True)
    enabled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<CompanyModule(company_id={self.company_id}, module_id={self.module_id}, enabled={self.is_enabled})>"


class UserModule(Base, TimestampMixin):
    """Per-user access to a module inside one company."""
    __tablename__ = "user_modules"
    __table_args__ = (
        UniqueConstraint("user_id", "module_id", "company_id", name="uq_user_module"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    module_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("modules.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    company_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    restrictions: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    granted_by: Mapped[str | None] = mapped_column(String(26), nullable=True)
    granted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<UserModule(user_id={self.user_id}, module_id={self.module_id}, enabled={self.is_enabled})>"


class CustomRole(Base, TimestampMixin):
    """
    Company-defined role.

    With `replaces_role_defaults=False` its permissions are added to the
    user's standard role defaults; with True they replace them.
    """
    __tablename__ = "custom_roles"
    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_custom_role_name"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    company_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    permissions: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    replaces_role_defaults: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    # Plain column: users.custom_role_id already points here
    created_by: Mapped[str | None] = mapped_column(String(26), nullable=True)

    def __repr__(self) -> str:
        return f"<CustomRole(id={self.id}, company_id={self.company_id}, name={self.name!r})>"
