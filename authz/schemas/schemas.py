"""Pydantic schemas for API request/response serialization."""

from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any, Union


# ---- Decisions ----
class DecisionOut(BaseModel):
    capability: str
    allowed: bool
    reason: str
    detail: Optional[str] = None

class DecisionBatchRequest(BaseModel):
    capabilities: List[str] = Field(..., min_length=1, max_length=200)
    require: str = Field("all", pattern="^(all|any)$")

    @field_validator("capabilities")
    @classmethod
    def _distinct(cls, v: List[str]) -> List[str]:
        # One decision per name, first occurrence order
        return list(dict.fromkeys(v))

class DecisionBatchOut(BaseModel):
    allowed: bool
    require: str
    decisions: List[DecisionOut]


# ---- Granted permissions ----
class GrantedPermissionsOut(BaseModel):
    principal: Union[int, str]
    permissions: List[str]
    total: int


class ExplanationOut(BaseModel):
    principal: Union[int, str, None] = None
    capability: Optional[str] = None
    allowed: bool
    reason: str
    detail: Optional[str] = None
    principal_id: Optional[int] = None
    active: Optional[bool] = None
    primary_role: Optional[str] = None
    role_level: Optional[int] = None
    grant: Optional[Dict[str, Any]] = None
    capability_in_catalog: Optional[bool] = None


# ---- Catalog ----
class PermissionOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    resource: Optional[str] = None
    action: Optional[str] = None
    is_system: bool = True

    class Config:
        from_attributes = True

class CatalogOut(BaseModel):
    permissions: List[PermissionOut]
    categories: List[str]


# ---- Cache ----
class CacheInvalidateRequest(BaseModel):
    principal_id: Optional[int] = Field(None, ge=1)

class MessageResponse(BaseModel):
    message: str


# ---- Security events ----
class SecurityEventOut(BaseModel):
    id: int
    event_type: str
    user_email: Optional[str] = None
    user_id: Optional[int] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    severity: str
    details: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class SecurityEventStat(BaseModel):
    event_type: str
    severity: str
    count: int

class SecurityEventsOut(BaseModel):
    events: List[SecurityEventOut]
    statistics: List[SecurityEventStat]
