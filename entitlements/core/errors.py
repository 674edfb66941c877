"""
Domain errors raised by the entitlement engine.

Services raise these; `entitlements.main` turns them into JSON responses.
Batch operations catch them per item and report them in the batch result
instead of failing the whole call.
"""
from typing import Any, Dict, List, Optional


class EntitlementError(Exception):
    """Base class for all business errors."""

    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        payload.update(self.details)
        return payload


class ValidationError(EntitlementError):
    """Malformed input or a reference to a catalog entry that does not exist."""
    status_code = 400


class DependencyError(EntitlementError):
    """A grant was requested but the permission's prerequisites are not held."""
    status_code = 400

    def __init__(self, permission_key: str, missing: List[str]):
        super().__init__(
            "Missing required permission dependencies",
            {"permission_key": permission_key, "missing_dependencies": list(missing)},
        )
        self.permission_key = permission_key
        self.missing = list(missing)


class AuthorizationError(EntitlementError):
    """The actor's role does not allow the operation at all."""
    status_code = 403


class NotFoundError(EntitlementError):
    """Unknown resource, or a resource outside the actor's tenant."""
    status_code = 404


class ConflictError(EntitlementError):
    status_code = 409
