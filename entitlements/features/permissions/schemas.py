"""
Pydantic schemas for user grants, effective permissions and bulk results.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# Requests
# ============================================================================

class GrantPermissionRequest(BaseModel):
    """Grant (`is_granted=true`) or revoke (`is_granted=false`) a data permission."""
    company_id: str = Field(..., min_length=1)
    permission_key: str = Field(..., min_length=1, max_length=100)
    is_granted: bool = True
    reason: Optional[str] = Field(None, max_length=1000)
    expires_at: Optional[datetime] = None


class BulkGrantItem(BaseModel):
    permission_key: str = Field(..., min_length=1, max_length=100)
    is_granted: bool = True
    reason: Optional[str] = Field(None, max_length=1000)
    expires_at: Optional[datetime] = None


class BulkGrantRequest(BaseModel):
    company_id: str = Field(..., min_length=1)
    permissions: List[BulkGrantItem] = Field(..., min_length=1, max_length=500)
    reason: Optional[str] = Field(None, max_length=1000, description="Default reason for every item")


class ModuleGrantRequest(BaseModel):
    company_id: str = Field(..., min_length=1)
    module_id: str = Field(..., min_length=1)
    restrictions: Optional[Dict[str, Any]] = None
    expires_at: Optional[datetime] = None


class ModuleRevokeRequest(BaseModel):
    company_id: str = Field(..., min_length=1)
    module_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=1000)


class AssignCustomRoleRequest(BaseModel):
    """`custom_role_id=null` clears the assignment."""
    custom_role_id: Optional[str] = None


# ============================================================================
# Responses
# ============================================================================

class DataPermissionGrant(BaseModel):
    permission_key: str
    permission_name: str
    permission_group: str
    is_granted: bool
    granted_by: Optional[str]
    granted_at: Optional[datetime]
    granted_reason: Optional[str]
    expires_at: Optional[datetime]


class ModuleGrant(BaseModel):
    module_id: str
    module_name: str
    tier: str
    is_enabled: bool
    restrictions: Dict[str, Any]
    granted_by: Optional[str]
    granted_at: Optional[datetime]
    expires_at: Optional[datetime]


class AvailableModule(BaseModel):
    module_id: str
    module_name: str
    description: Optional[str]
    tier: str
    category: Optional[str]
    included_permissions: List[str]
    company_provisioned: bool
    pricing_tier: Optional[str]
    users_licensed: Optional[int]
    monthly_price: Decimal = Field(..., description="Company override, else the module default")
    per_user_price: Decimal
    user_has_access: bool = Field(..., description="The user holds an enabled, non-expired grant")
    granted_at: Optional[datetime]
    restrictions: Dict[str, Any]
    expires_at: Optional[datetime]
    has_access: bool


class AvailableModulesSummary(BaseModel):
    total_modules: int
    modules_with_access: int
    company_provisioned: int
    core_modules: int


class AvailableModulesResponse(BaseModel):
    user_id: str
    company_id: str
    role: str
    modules: List[AvailableModule]
    summary: AvailableModulesSummary


class UserPermissionsResponse(BaseModel):
    user_id: str
    company_id: str
    data_permissions: List[DataPermissionGrant]
    modules: List[ModuleGrant]


class EffectivePermissionResponse(BaseModel):
    permission_key: str
    permission_name: str
    permission_group: str
    source: str = Field(..., description="role | data | module")
    granted_via: str

    model_config = ConfigDict(from_attributes=True)


class EffectivePermissionsResponse(BaseModel):
    user_id: str
    company_id: str
    permissions: List[EffectivePermissionResponse]
    total: int


class PermissionCheckResponse(BaseModel):
    user_id: str
    company_id: str
    permission_key: str
    has_permission: bool


class GrantResponse(BaseModel):
    permission_key: str
    is_granted: bool
    old_value: Optional[Dict[str, Any]]
    new_value: Optional[Dict[str, Any]]


class ModuleGrantResponse(BaseModel):
    module_id: str
    module_name: Optional[str] = None
    old_value: Optional[Dict[str, Any]]
    new_value: Optional[Dict[str, Any]]


class BulkGrantResult(GrantResponse):
    index: int
    status: str


class BatchSummary(BaseModel):
    total_requested: int
    successful: int
    failed: int


class BulkGrantResponse(BaseModel):
    """Per-item outcome; `errors` entries carry `index`, `permission_key`, `error` and details."""
    results: List[BulkGrantResult]
    errors: List[Dict[str, Any]]
    summary: BatchSummary


class UserCustomRoleResponse(BaseModel):
    id: str
    company_id: Optional[str]
    role: str
    custom_role_id: Optional[str]

    model_config = ConfigDict(from_attributes=True)
