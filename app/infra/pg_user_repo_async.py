# app/infra/pg_user_repo_async.py
"""
Async PostgreSQL repositories for profiles (users) and admin invitations.

Password and recovery-token hashes are written here but never read back
into ``Profile``; they stay in the database.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

import asyncpg

from app.core.dispatch.domain import AdminInvitation, Profile, Role
from app.core.errors import ConflictError
from app.infra.db_resilience_async import retry_on_transient_error, safe_db_conn

_PROFILE_COLUMNS = "id, email, full_name, role, is_active, email_confirmed, created_at, updated_at"


def _row_to_profile(row) -> Profile:
    return Profile(
        id=str(row["id"]),
        email=row["email"],
        full_name=row["full_name"],
        role=Role(row["role"]),
        is_active=row["is_active"],
        email_confirmed=row["email_confirmed"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_invitation(row) -> AdminInvitation:
    return AdminInvitation(
        id=str(row["id"]),
        email=row["email"],
        invited_by=str(row["invited_by"]) if row["invited_by"] is not None else None,
        token=row["token"],
        expires_at=row["expires_at"],
        used_at=row["used_at"],
        created_at=row["created_at"],
    )


async def _insert_profile(conn, profile: Profile, password_hash: str) -> Profile:
    try:
        row = await conn.fetchrow(
            f"""
            INSERT INTO profiles (id, email, full_name, role, is_active, email_confirmed,
                                  password_hash, created_at, updated_at)
            VALUES ($1::uuid, $2, $3, $4, $5, $6, $7, coalesce($8, now()), coalesce($9, now()))
            RETURNING {_PROFILE_COLUMNS}
            """,
            profile.id, profile.email, profile.full_name, profile.role.value,
            profile.is_active, profile.email_confirmed, password_hash,
            profile.created_at, profile.updated_at,
        )
    except asyncpg.UniqueViolationError:
        raise ConflictError(f"A user with email '{profile.email}' already exists") from None
    return _row_to_profile(row)


class AsyncPostgresProfileRepository:

    @retry_on_transient_error()
    async def list_all(self) -> list[Profile]:
        async with safe_db_conn() as conn:
            rows = await conn.fetch(f"SELECT {_PROFILE_COLUMNS} FROM profiles ORDER BY created_at DESC")
            return [_row_to_profile(r) for r in rows]

    @retry_on_transient_error()
    async def get(self, profile_id: str) -> Optional[Profile]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE id::text = $1", profile_id
            )
            return _row_to_profile(row) if row else None

    @retry_on_transient_error()
    async def get_by_email(self, email: str) -> Optional[Profile]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE lower(email) = lower($1)", email
            )
            return _row_to_profile(row) if row else None

    async def create(self, profile: Profile, password_hash: str) -> Profile:
        async with safe_db_conn() as conn:
            return await _insert_profile(conn, profile, password_hash)

    async def delete(self, profile_id: str) -> bool:
        async with safe_db_conn() as conn:
            result = await conn.execute("DELETE FROM profiles WHERE id::text = $1", profile_id)
            return result.endswith(" 1")

    async def set_role(self, profile_id: str, role: Role) -> Optional[Profile]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE profiles SET role = $2, updated_at = now()
                WHERE id::text = $1
                RETURNING {_PROFILE_COLUMNS}
                """,
                profile_id, role.value,
            )
            return _row_to_profile(row) if row else None

    async def set_recovery_token(self, profile_id: str, token_hash: str, expires_at: datetime) -> None:
        async with safe_db_conn() as conn:
            await conn.execute(
                """
                UPDATE profiles
                SET recovery_token_hash = $2, recovery_expires_at = $3, updated_at = now()
                WHERE id::text = $1
                """,
                profile_id, token_hash, expires_at,
            )

    @retry_on_transient_error()
    async def get_by_recovery_token(self, token_hash: str) -> Optional[tuple[Profile, datetime]]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_PROFILE_COLUMNS}, recovery_expires_at
                FROM profiles WHERE recovery_token_hash = $1
                """,
                token_hash,
            )
            if row is None:
                return None
            return _row_to_profile(row), row["recovery_expires_at"]

    async def update_password(self, profile_id: str, password_hash: str) -> None:
        async with safe_db_conn() as conn:
            await conn.execute(
                """
                UPDATE profiles
                SET password_hash = $2, recovery_token_hash = NULL,
                    recovery_expires_at = NULL, updated_at = now()
                WHERE id::text = $1
                """,
                profile_id, password_hash,
            )


class AsyncPostgresInvitationRepository:

    async def create(self, invitation: AdminInvitation) -> AdminInvitation:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO admin_invitations (id, email, invited_by, token, expires_at, created_at)
                VALUES ($1::uuid, $2, $3::uuid, $4, $5, coalesce($6, now()))
                RETURNING *
                """,
                invitation.id, invitation.email, invitation.invited_by,
                invitation.token, invitation.expires_at, invitation.created_at,
            )
            return _row_to_invitation(row)

    @retry_on_transient_error()
    async def get(self, invitation_id: str) -> Optional[AdminInvitation]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM admin_invitations WHERE id::text = $1", invitation_id
            )
            return _row_to_invitation(row) if row else None

    @retry_on_transient_error()
    async def get_by_token(self, token: str) -> Optional[AdminInvitation]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow("SELECT * FROM admin_invitations WHERE token = $1", token)
            return _row_to_invitation(row) if row else None

    @retry_on_transient_error()
    async def get_active_for_email(self, email: str, now: datetime) -> Optional[AdminInvitation]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM admin_invitations
                WHERE lower(email) = lower($1) AND used_at IS NULL AND expires_at > $2
                ORDER BY created_at DESC
                LIMIT 1
                """,
                email, now,
            )
            return _row_to_invitation(row) if row else None

    @retry_on_transient_error()
    async def list_pending(self, now: datetime) -> list[AdminInvitation]:
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM admin_invitations
                WHERE used_at IS NULL AND expires_at > $1
                ORDER BY created_at DESC
                """,
                now,
            )
            return [_row_to_invitation(r) for r in rows]

    async def accept(
        self, token: str, profile: Profile, password_hash: str, now: datetime
    ) -> Optional[Profile]:
        """
        Consume the invitation and create the invited profile in one transaction.

        Returns None when the token is unknown, used or expired at ``now``.
        Raises ConflictError if the email is already registered.
        """
        async with safe_db_conn(autocommit=False) as conn:
            claimed = await conn.fetchval(
                """
                UPDATE admin_invitations SET used_at = $2
                WHERE token = $1 AND used_at IS NULL AND expires_at > $2
                RETURNING id
                """,
                token, now,
            )
            if claimed is None:
                return None
            return await _insert_profile(conn, profile, password_hash)

    async def revoke(self, invitation_id: str, expires_at: datetime) -> bool:
        async with safe_db_conn() as conn:
            result = await conn.execute(
                "UPDATE admin_invitations SET expires_at = $2 WHERE id::text = $1",
                invitation_id, expires_at,
            )
            return result.endswith(" 1")
