"""
Dashboard views over an in-memory job list: filtering, stats, CSV export.

The business week runs Tuesday through Monday.  Every date comparison is
made in the time zone of the ``now`` passed in, so callers control the
business time zone by localizing ``now``.
"""
from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional

from app.core.dispatch.domain import DateRange, Job, JobStatus, Subcontractor
from app.core.dispatch.messages import digits_only

TUESDAY = 1  # date.weekday(): Monday == 0
MONTH_WINDOW_DAYS = 30
_PHONE_SHAPED = re.compile(r"^[\d\s+().-]+$")

CSV_COLUMNS = [
    "Job ID",
    "Customer Name",
    "Phone",
    "Address",
    "Issue",
    "Status",
    "Subcontractor",
    "Region",
    "Sale Price",
    "Parts Cost",
    "Job Profit",
    "Created Date",
]


@dataclass(frozen=True)
class JobFilter:
    """Empty fields are no-ops; all set fields are ANDed."""
    search: str = ""
    status: Optional[JobStatus] = None
    subcontractor_id: Optional[str] = None
    region: Optional[str] = None
    date_range: Optional[DateRange] = None


@dataclass(frozen=True)
class JobStats:
    total: int
    pending: int
    in_progress: int
    completed: int


# ---------------------------------------------------------------------------
# Business week
# ---------------------------------------------------------------------------

def days_since_tuesday(weekday: int) -> int:
    """Days back to the most recent Tuesday for a ``date.weekday()`` value."""
    if weekday == 6:  # Sunday
        return 5
    if weekday == 0:  # Monday
        return 6
    return weekday - TUESDAY


def week_boundaries(ref: datetime) -> tuple[datetime, datetime]:
    """``(start, end)`` of the Tuesday-Monday week containing ``ref``, both inclusive."""
    start_day = ref.date() - timedelta(days=days_since_tuesday(ref.weekday()))
    start = datetime.combine(start_day, time.min, tzinfo=ref.tzinfo)
    end_day = start_day + timedelta(days=6)
    end = datetime.combine(end_day, time(23, 59, 59, 999000), tzinfo=ref.tzinfo)
    return start, end


def _localize(value: datetime, now: datetime) -> datetime:
    # Naive values are taken as UTC
    if now.tzinfo is None:
        return value.astimezone(timezone.utc).replace(tzinfo=None) if value.tzinfo else value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(now.tzinfo)


def matches_date_range(created_at: datetime | None, date_range: DateRange | None, now: datetime) -> bool:
    if date_range is None:
        return True
    if created_at is None:
        return False

    created = _localize(created_at, now)
    today: date = now.date()

    if date_range == DateRange.TODAY:
        return created.date() == today
    if date_range == DateRange.YESTERDAY:
        return created.date() == today - timedelta(days=1)
    if date_range == DateRange.MONTH:
        return created >= now - timedelta(days=MONTH_WINDOW_DAYS)

    offsets = {
        DateRange.THIS_WEEK: 0,
        DateRange.LAST_WEEK: -7,
        DateRange.NEXT_WEEK: 7,
    }
    start, end = week_boundaries(now + timedelta(days=offsets[date_range]))
    return start <= created <= end


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

def matches_search(job: Job, term: str) -> bool:
    term = term.strip()
    if not term:
        return True

    needle = term.lower()
    for text in (job.customer_name, job.job_id, job.customer_address):
        if needle in (text or "").lower():
            return True

    # Digits are compared only for phone-shaped terms
    if not _PHONE_SHAPED.match(term):
        return False
    term_digits = digits_only(term)
    return bool(term_digits) and term_digits in digits_only(job.customer_phone)


def filter_jobs(jobs: Iterable[Job], criteria: JobFilter, now: datetime) -> list[Job]:
    result = []
    for job in jobs:
        if not matches_search(job, criteria.search):
            continue
        if criteria.status and job.status != criteria.status:
            continue
        if criteria.subcontractor_id and job.subcontractor_id != criteria.subcontractor_id:
            continue
        if criteria.region and job.region != criteria.region:
            continue
        if not matches_date_range(job.created_at, criteria.date_range, now):
            continue
        result.append(job)
    return result


# ---------------------------------------------------------------------------
# Summary views
# ---------------------------------------------------------------------------

def job_stats(jobs: Iterable[Job]) -> JobStats:
    jobs = list(jobs)
    return JobStats(
        total=len(jobs),
        pending=sum(1 for j in jobs if j.status == JobStatus.PENDING),
        in_progress=sum(1 for j in jobs if j.status == JobStatus.IN_PROGRESS),
        completed=sum(1 for j in jobs if j.status == JobStatus.COMPLETED),
    )


def unique_regions(jobs: Iterable[Job]) -> list[str]:
    """Distinct non-empty regions in first-seen order."""
    seen: dict[str, None] = {}
    for job in jobs:
        if job.region:
            seen.setdefault(job.region, None)
    return list(seen)


def current_week_label(now: datetime) -> str:
    start, end = week_boundaries(now)
    return f"{start:%b} {start.day} - {end:%b} {end.day}"


def _money_cell(value) -> str:
    return f"{value:.2f}" if value else ""


def export_csv(
    jobs: Iterable[Job],
    subcontractors: Iterable[Subcontractor] = (),
    *,
    tz=None,
) -> str:
    """CSV of the given jobs with every cell quoted."""
    names = {s.id: s.name for s in subcontractors}
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)

    for job in jobs:
        if job.subcontractor is not None:
            sub_name = job.subcontractor.name
        else:
            sub_name = names.get(job.subcontractor_id or "", "")

        created = ""
        if job.created_at is not None:
            when = job.created_at.astimezone(tz) if tz and job.created_at.tzinfo else job.created_at
            created = f"{when.month}/{when.day}/{when.year}"

        writer.writerow([
            job.job_id,
            job.customer_name,
            job.customer_phone,
            job.customer_address,
            job.customer_issue,
            job.status.value,
            sub_name,
            job.region or "",
            _money_cell(job.price),
            _money_cell(job.parts_cost),
            _money_cell(job.job_profit),
            created,
        ])
    return buf.getvalue()
