# app/infra/audit_log.py
"""
Audit logging for administrative operations.

Records user, invitation, subcontractor and job-deletion actions to a
dedicated ``audit`` logger (separate from the application log) so they
can be routed to their own sink via logging configuration.

Field-level job history lives in the ``job_updates`` table; this log
covers actions that have no row left behind to inspect.
"""
from __future__ import annotations

import logging
from typing import Any

_audit_logger = logging.getLogger("audit")


def audit_event(
    action: str,
    *,
    actor: str | None = None,
    target: str | None = None,
    detail: str = "",
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Record an audit event.

    Args:
        action: Action name (e.g., "user.create", "invitation.revoke")
        actor: Profile id (or name) performing the action
        target: Affected resource id
        detail: Human-readable detail
        extra: Additional structured context
    """
    record = {
        "audit_action": action,
        "actor": actor or "",
        "audit_target": target or "",
        "detail": detail,
    }
    if extra:
        record.update(extra)

    _audit_logger.info(
        f"AUDIT: {action} actor={actor or '-'} target={target or '-'} {detail}",
        extra=record,
    )
