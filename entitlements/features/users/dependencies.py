"""
FastAPI dependencies for authentication, plus the tenant scoping rules
applied at every engine entry point.

Scoping rules:
- super-admin may act on any company;
- admin may act only inside their own company;
- a plain user may only read their own grants and effective permissions.

Lookups that cross tenants raise NotFoundError so the response never
confirms that a resource exists in another company.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.core.database.engine import get_db
from entitlements.core.errors import AuthorizationError, NotFoundError
from entitlements.features.companies.models import Company
from entitlements.features.users.models import User
from entitlements.features.users.auth import verify_jwt_token


security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the acting user from the bearer token.

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_jwt_token(credentials.credentials)
    user_id = payload.get("sub")

    user = await db.scalar(select(User).where(User.id == user_id))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown user",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"


# ============================================================================
# Tenant scoping
# ============================================================================

def require_admin(actor: User) -> None:
    """Mutations and company-wide reads need admin or super-admin."""
    if not actor.is_admin:
        raise AuthorizationError("Admin privileges required")


def require_super_admin(actor: User) -> None:
    if not actor.is_super_admin:
        raise AuthorizationError("Super-admin privileges required")


def ensure_company_scope(actor: User, company_id: str) -> None:
    """Admins stay inside their own company; super-admins go anywhere."""
    require_admin(actor)
    if actor.is_super_admin:
        return
    if actor.company_id != company_id:
        raise NotFoundError("Company not found")


def can_view_user(actor: User, target: User) -> bool:
    if actor.is_super_admin or actor.id == target.id:
        return True
    return actor.is_admin and actor.company_id is not None and actor.company_id == target.company_id


async def get_company(db: AsyncSession, company_id: str) -> Company:
    company = await db.scalar(select(Company).where(Company.id == company_id))
    if company is None:
        raise NotFoundError("Company not found")
    return company


async def get_visible_user(db: AsyncSession, actor: User, user_id: str) -> User:
    """Load a user the actor may see, or raise NotFoundError."""
    target = await db.scalar(select(User).where(User.id == user_id))
    if target is None or not can_view_user(actor, target):
        raise NotFoundError("User not found")
    return target


async def get_company_member(db: AsyncSession, user_id: str, company_id: str) -> User:
    """The grant target must belong to the company the grant is scoped to."""
    target = await db.scalar(
        select(User).where(User.id == user_id, User.company_id == company_id)
    )
    if target is None:
        raise NotFoundError("User not found in this company")
    return target
