# app/admin/models.py
"""
Pydantic request/response models for the user-management API.

These live *outside* the transport layer so the service can
validate payloads without depending on FastAPI.  Password length is
checked by the service because the minimum is configurable.
"""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from app.core.dispatch.domain import AdminInvitation, Profile


def _normalize_email(v: str) -> str:
    v = v.strip().lower()
    local, sep, domain = v.partition("@")
    if not sep or not local or "." not in domain:
        raise ValueError("must be a valid email address")
    return v


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class CreateUserRequest(BaseModel):
    """Admin-created account."""

    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=256)
    full_name: str = Field(default="", max_length=256)
    role: Literal["admin", "user"] = "user"

    @field_validator("email")
    @classmethod
    def email_must_be_valid(cls, v: str) -> str:
        return _normalize_email(v)


class SetRoleRequest(BaseModel):
    role: Literal["admin", "user"]


class CreateInvitationRequest(BaseModel):
    email: str = Field(..., max_length=320)

    @field_validator("email")
    @classmethod
    def email_must_be_valid(cls, v: str) -> str:
        return _normalize_email(v)


class SignupRequest(BaseModel):
    """Account creation from an admin invitation; the email comes from the invitation."""

    token: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., max_length=256)
    full_name: str = Field(default="", max_length=256)


class PasswordResetRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., max_length=256)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class UserSummary(BaseModel):
    id: str
    email: str
    full_name: str
    role: str
    is_active: bool
    email_confirmed: bool
    created_at: datetime | None = None

    @classmethod
    def from_profile(cls, p: Profile) -> "UserSummary":
        return cls(
            id=p.id,
            email=p.email,
            full_name=p.full_name,
            role=p.role.value,
            is_active=p.is_active,
            email_confirmed=p.email_confirmed,
            created_at=p.created_at,
        )


class InvitationSummary(BaseModel):
    """Invitation as shown to admins.  The token itself is only returned on creation."""

    id: str
    email: str
    invited_by: str | None
    expires_at: datetime
    used_at: datetime | None = None
    created_at: datetime | None = None
    invite_url: str | None = None

    @classmethod
    def from_invitation(cls, inv: AdminInvitation, invite_url: str | None = None) -> "InvitationSummary":
        return cls(
            id=inv.id,
            email=inv.email,
            invited_by=inv.invited_by,
            expires_at=inv.expires_at,
            used_at=inv.used_at,
            created_at=inv.created_at,
            invite_url=invite_url,
        )


class InvitationCheck(BaseModel):
    valid: bool = True
    email: str
    expires_at: datetime


class PasswordResetLink(BaseModel):
    user_id: str
    reset_url: str
    expires_at: datetime


class OkResponse(BaseModel):
    ok: bool = True
    id: str | None = None
