from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

PASSWORD_MIN_LENGTH = 8


class TokenPair(BaseModel):
    """Access token (roles and permission codes as claims) plus a refresh token."""
    token_type: str = "bearer"
    access_token: str
    refresh_token: str


class RefreshRequest(BaseModel):
    refresh_token: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH)
    full_name: Optional[str] = None


class Message(BaseModel):
    message: str


class UserRead(BaseModel):
    """A user with the role names and effective permission codes the gateway will see."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: EmailStr
    full_name: Optional[str] = None
    is_active: bool
    is_superadmin: bool
    created_at: datetime
    updated_at: datetime
    roles: List[str] = Field(default_factory=list)
    permissions: List[str] = Field(default_factory=list, description="Effective codes; admin:all for administrators")


class ActorProfile(UserRead):
    """UserRead plus, per document family, the actions the user may perform."""
    document_actions: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Entity type -> actions (CREATE included) granted by the user's permissions",
    )


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH)
    full_name: Optional[str] = None
    is_active: bool = True
    is_superadmin: bool = False


class UserUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=PASSWORD_MIN_LENGTH)
    full_name: Optional[str] = None
    is_active: Optional[bool] = None
    is_superadmin: Optional[bool] = None


class RoleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class PermissionRead(BaseModel):
    """Permission code from the tenant catalogue, e.g. `compras.ordenes.approve`."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    description: Optional[str] = None


class RoleDetailRead(RoleRead):
    permissions: List[str] = Field(default_factory=list, description="Granted permission codes")
