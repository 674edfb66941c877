"""
User model with ULID primary keys.
"""
import enum
from sqlalchemy import String, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from entitlements.core.database.base import Base, TimestampMixin, generate_ulid


class UserRole(str, enum.Enum):
    """Standard roles. Role default permission sets live in `role_default_permissions`."""
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super-admin"


class User(Base, TimestampMixin):
    """
    User model representing an authenticated member of exactly one company.

    Authentication happens upstream; this table only carries what the
    entitlement engine needs: the role, the company and an optional custom role.
    """
    __tablename__ = "users"

    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[str] = mapped_column(String(50), nullable=False, default=UserRole.USER.value, index=True)

    company_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Optional company-scoped custom role (supplements or replaces role defaults)
    custom_role_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("custom_roles.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    company: Mapped["Company"] = relationship(  # type: ignore
        "Company",
        back_populates="users",
        foreign_keys=[company_id],
        lazy="selectin"
    )

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN.value

    @property
    def is_admin(self) -> bool:
        """Company admin or super-admin."""
        return self.role in (UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role})>"
