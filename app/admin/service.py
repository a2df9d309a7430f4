# app/admin/service.py
"""
User Admin Service: the single orchestration point for accounts,
roles, password resets and admin invitations.

Responsibilities:
    1. Enforce the admin role and the self-protection rules
    2. Call repositories for persistence
    3. Emit audit events
    4. Return Pydantic DTOs; password hashes and raw reset tokens
       never leave this module except inside a one-time link

The transport layer (http_app.py user routes) is a thin adapter:
    parse request -> call service -> map DispatchError -> return JSON.
"""
from __future__ import annotations

import hashlib
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

import bcrypt

from app.admin.models import (
    CreateInvitationRequest,
    CreateUserRequest,
    InvitationCheck,
    InvitationSummary,
    OkResponse,
    PasswordResetLink,
    PasswordResetRequest,
    SetRoleRequest,
    SignupRequest,
    UserSummary,
)
from app.config import settings
from app.core.dispatch.access import assert_role
from app.core.dispatch.domain import Actor, AdminInvitation, Profile, Role
from app.core.dispatch.ports import InvitationRepository, ProfileRepository
from app.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.infra.audit_log import audit_event
from app.infra.logging_config import get_logger, mask_email

logger = get_logger(__name__)

# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def hash_token(token: str) -> str:
    """Reset tokens are stored as SHA-256 digests; only the link holder has the raw value."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserAdminService:
    """
    Orchestrates user, role and invitation operations.

    Thread-safety: stateless, safe to use as a singleton.
    """

    def __init__(
        self,
        *,
        profiles: ProfileRepository,
        invitations: InvitationRepository,
        base_url: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.profiles = profiles
        self.invitations = invitations
        self.base_url = (base_url or settings.public_base_url).rstrip("/")
        self.clock = clock

    def _check_password(self, password: str) -> None:
        if len(password) < settings.min_password_length:
            raise ValidationError(
                f"Password must be at least {settings.min_password_length} characters"
            )
        if len(password.encode("utf-8")) > _BCRYPT_MAX_BYTES:
            raise ValidationError(f"Password must be at most {_BCRYPT_MAX_BYTES} bytes")

    async def _get_profile(self, user_id: str) -> Profile:
        profile = await self.profiles.get(user_id)
        if profile is None:
            raise NotFoundError(f"User not found: {user_id}")
        return profile

    # ------------------------------------------------------------------
    # Actor resolution
    # ------------------------------------------------------------------

    async def resolve_actor(self, profile_id: str) -> Actor:
        """Map the ``X-Actor-Id`` of a staff request to an active profile."""
        profile = await self.profiles.get(profile_id)
        if profile is None or not profile.is_active:
            raise AuthorizationError("Unknown or inactive user")
        return Actor.from_profile(profile)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def list_users(self, actor: Actor) -> list[UserSummary]:
        assert_role(actor, Role.ADMIN, action="manage users")
        return [UserSummary.from_profile(p) for p in await self.profiles.list_all()]

    async def create_user(self, actor: Actor, req: CreateUserRequest) -> UserSummary:
        """
        Create an account with a bcrypt-hashed password.

        Admin-created accounts are active and confirmed immediately.
        """
        assert_role(actor, Role.ADMIN, action="manage users")
        self._check_password(req.password)

        if await self.profiles.get_by_email(req.email) is not None:
            raise ConflictError(f"A user with email '{req.email}' already exists")

        now = self.clock()
        profile = Profile(
            id=str(uuid.uuid4()),
            email=req.email,
            full_name=req.full_name.strip(),
            role=Role(req.role),
            is_active=True,
            email_confirmed=True,
            created_at=now,
            updated_at=now,
        )
        created = await self.profiles.create(profile, hash_password(req.password))

        audit_event("user.create", actor=actor.id, target=created.id, detail=f"role={created.role.value}")
        return UserSummary.from_profile(created)

    async def delete_user(self, actor: Actor, user_id: str) -> OkResponse:
        assert_role(actor, Role.ADMIN, action="manage users")
        if user_id == actor.id:
            raise ValidationError("You cannot delete your own account")

        await self._get_profile(user_id)
        await self.profiles.delete(user_id)

        audit_event("user.delete", actor=actor.id, target=user_id)
        return OkResponse(id=user_id)

    async def set_role(self, actor: Actor, user_id: str, req: SetRoleRequest) -> UserSummary:
        """Promote to admin or demote to user.  Admins cannot change their own role."""
        assert_role(actor, Role.ADMIN, action="manage users")
        if user_id == actor.id:
            raise ValidationError("You cannot change your own role")

        await self._get_profile(user_id)
        updated = await self.profiles.set_role(user_id, Role(req.role))
        if updated is None:
            raise NotFoundError(f"User not found: {user_id}")

        audit_event("user.role", actor=actor.id, target=user_id, detail=f"role={req.role}")
        return UserSummary.from_profile(updated)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def issue_password_reset(self, actor: Actor, user_id: str) -> PasswordResetLink:
        """
        Create a one-time reset link for a user.

        Only the SHA-256 of the token is stored; issuing a new link
        replaces any previous one.
        """
        assert_role(actor, Role.ADMIN, action="manage users")
        profile = await self._get_profile(user_id)

        token = secrets.token_urlsafe(32)
        expires_at = self.clock() + timedelta(seconds=settings.password_reset_ttl_seconds)
        await self.profiles.set_recovery_token(profile.id, hash_token(token), expires_at)

        audit_event("user.password_reset_issued", actor=actor.id, target=profile.id)
        logger.info("Password reset issued for %s", mask_email(profile.email))
        return PasswordResetLink(
            user_id=profile.id,
            reset_url=f"{self.base_url}/reset-password?token={token}",
            expires_at=expires_at,
        )

    async def complete_password_reset(self, req: PasswordResetRequest) -> OkResponse:
        found = await self.profiles.get_by_recovery_token(hash_token(req.token))
        if found is None:
            raise ValidationError("Invalid or expired reset token")
        profile, expires_at = found
        if expires_at <= self.clock():
            raise ValidationError("Reset token has expired")

        self._check_password(req.password)
        await self.profiles.update_password(profile.id, hash_password(req.password))

        audit_event("user.password_reset", actor=profile.id, target=profile.id)
        return OkResponse(id=profile.id)

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------

    def _invite_url(self, token: str) -> str:
        return f"{self.base_url}/signup?token={token}"

    async def create_invitation(self, actor: Actor, req: CreateInvitationRequest) -> InvitationSummary:
        """
        Invite someone to become an admin.

        Fails if the email already has an account or an active invitation.
        """
        assert_role(actor, Role.ADMIN, action="invite admins")
        now = self.clock()

        if await self.profiles.get_by_email(req.email) is not None:
            raise ConflictError(f"A user with email '{req.email}' already exists")
        if await self.invitations.get_active_for_email(req.email, now) is not None:
            raise ConflictError(f"An active invitation already exists for '{req.email}'")

        token = secrets.token_urlsafe(32)
        invitation = AdminInvitation(
            id=str(uuid.uuid4()),
            email=req.email,
            invited_by=actor.id,
            token=token,
            expires_at=now + timedelta(days=settings.invitation_ttl_days),
            created_at=now,
        )
        created = await self.invitations.create(invitation)

        audit_event("invitation.create", actor=actor.id, target=created.id, detail=mask_email(created.email))
        return InvitationSummary.from_invitation(created, invite_url=self._invite_url(token))

    async def list_invitations(self, actor: Actor) -> list[InvitationSummary]:
        """Unused, unexpired invitations."""
        assert_role(actor, Role.ADMIN, action="invite admins")
        pending = await self.invitations.list_pending(self.clock())
        return [InvitationSummary.from_invitation(i) for i in pending]

    async def revoke_invitation(self, actor: Actor, invitation_id: str) -> OkResponse:
        """Revoke by moving the expiry into the past; the row is kept."""
        assert_role(actor, Role.ADMIN, action="invite admins")
        invitation = await self.invitations.get(invitation_id)
        if invitation is None:
            raise NotFoundError(f"Invitation not found: {invitation_id}")
        if invitation.used_at is not None:
            raise ConflictError("Invitation has already been used")

        await self.invitations.revoke(invitation_id, self.clock() - timedelta(seconds=1))

        audit_event("invitation.revoke", actor=actor.id, target=invitation_id)
        return OkResponse(id=invitation_id)

    async def _active_invitation(self, token: str) -> AdminInvitation:
        invitation = await self.invitations.get_by_token(token)
        if invitation is None or invitation.used_at is not None:
            raise ValidationError("Invalid or expired invitation token")
        if invitation.expires_at <= self.clock():
            raise ValidationError("Invitation has expired")
        return invitation

    async def validate_invitation(self, token: str) -> InvitationCheck:
        invitation = await self._active_invitation(token)
        return InvitationCheck(email=invitation.email, expires_at=invitation.expires_at)

    async def signup(self, req: SignupRequest) -> UserSummary:
        """Consume an invitation and create the invited admin account."""
        invitation = await self._active_invitation(req.token)
        self._check_password(req.password)

        if await self.profiles.get_by_email(invitation.email) is not None:
            raise ConflictError(f"A user with email '{invitation.email}' already exists")

        now = self.clock()
        profile = Profile(
            id=str(uuid.uuid4()),
            email=invitation.email,
            full_name=req.full_name.strip(),
            role=Role.ADMIN,
            is_active=True,
            email_confirmed=True,
            created_at=now,
            updated_at=now,
        )
        created = await self.invitations.accept(invitation.token, profile, hash_password(req.password), now)
        if created is None:
            # Consumed or revoked since it was checked above
            raise ValidationError("Invalid or expired invitation token")

        audit_event("invitation.accept", actor=created.id, target=invitation.id, detail=mask_email(created.email))
        return UserSummary.from_profile(created)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_svc: UserAdminService | None = None


def get_admin_service() -> UserAdminService:
    """Get the global UserAdminService singleton (Postgres-backed)."""
    global _svc
    if _svc is None:
        from app.infra.pg_user_repo_async import (
            AsyncPostgresInvitationRepository,
            AsyncPostgresProfileRepository,
        )

        _svc = UserAdminService(
            profiles=AsyncPostgresProfileRepository(),
            invitations=AsyncPostgresInvitationRepository(),
        )
    return _svc


def reset_admin_service() -> None:
    """Reset the singleton (for testing)."""
    global _svc
    _svc = None
