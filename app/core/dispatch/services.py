"""
Dispatch policy: subcontractor messages and admin notifications.

Nothing here is allowed to fail the job mutation that triggered it.
Bad contact data and delivery errors come back as warnings next to the
result instead of being raised.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from app.core.dispatch.deeplinks import DispatchLinks, build_dispatch_links, check_phone
from app.core.dispatch.domain import Actor, ClientPlatform, Job, JobUpdate, MessageKind, Subcontractor
from app.core.dispatch.messages import build_admin_update_summary, build_assignment_message, build_update_message
from app.core.errors import DeliveryFailure, InvalidPhoneFormat
from app.infra.logging_config import get_logger
from app.infra.metrics import AppMetrics

logger = get_logger(__name__)


@dataclass
class DispatchOutcome:
    """
    What the client needs to contact a subcontractor.

    On success ``links`` is set and ``web_link`` is the copy-paste fallback.
    On failure ``ok`` is False, ``warning`` explains why, and ``message`` +
    ``contact_phone`` let the user reach out manually.
    """
    ok: bool
    kind: MessageKind
    message: str
    contact_name: str
    contact_phone: str
    links: Optional[DispatchLinks] = None
    warning: Optional[str] = None

    @property
    def web_link(self) -> Optional[str]:
        return self.links.web_link if self.links else None


@dataclass
class NotifyResult:
    sent: bool
    channel: str
    warnings: list[str] = field(default_factory=list)


def prepare_subcontractor_message(
    job: Job,
    subcontractor: Subcontractor,
    kind: MessageKind,
    platform: ClientPlatform,
    base_url: str,
) -> DispatchOutcome:
    """Build the assignment/update text and WhatsApp links for ``subcontractor``."""
    if kind == MessageKind.ASSIGNMENT:
        message = build_assignment_message(job, base_url)
    else:
        message = build_update_message(job, base_url)

    # Manual-contact fallback shows the number in display form when it is valid
    contact_phone = check_phone(subcontractor.phone).formatted

    try:
        links = build_dispatch_links(subcontractor.phone, message, platform)
    except InvalidPhoneFormat as exc:
        logger.warning(
            "Dispatch link unavailable for job=%s: %s",
            job.job_id, exc.detail,
            extra={"job_id": job.job_id, "subcontractor_id": subcontractor.id},
        )
        AppMetrics.dispatch_failed(kind.value, "invalid_phone")
        return DispatchOutcome(
            ok=False,
            kind=kind,
            message=message,
            contact_name=subcontractor.name,
            contact_phone=contact_phone,
            warning=(
                f"Could not create a WhatsApp link for {subcontractor.name}: {exc.detail} "
                "Copy the message and contact them manually."
            ),
        )

    AppMetrics.dispatch_prepared(kind.value, platform.value)
    return DispatchOutcome(
        ok=True,
        kind=kind,
        message=message,
        contact_name=subcontractor.name,
        contact_phone=contact_phone,
        links=links,
    )


async def notify_admins_of_update(job: Job, records: list[JobUpdate], actor: Actor) -> NotifyResult:
    """
    Send one summary of ``records`` to the admin notification channel.

    Never raises for delivery problems; they are logged, counted and
    returned as warnings.
    """
    from app.infra.notification_channels import AdminNotification, get_notification_channel

    channel = get_notification_channel()
    if not records or channel.name == "disabled":
        return NotifyResult(sent=False, channel=channel.name)

    subject, body = build_admin_update_summary(job, records, actor.name)
    notification = AdminNotification(
        job_id=job.job_id,
        subject=subject,
        body=body,
        metadata={"fields": [r.field_name for r in records], "updated_by": actor.name},
    )

    try:
        await channel.send(notification)
    except DeliveryFailure as exc:
        logger.warning(
            "Admin notification failed via %s for job=%s: %s",
            channel.name, job.job_id, exc.detail,
            extra={"job_id": job.job_id},
        )
        AppMetrics.admin_notification_failed(channel.name)
        return NotifyResult(
            sent=False,
            channel=channel.name,
            warnings=[f"Update saved, but the admin notification was not delivered: {exc.detail}"],
        )

    AppMetrics.admin_notification_sent(channel.name)
    return NotifyResult(sent=True, channel=channel.name)
