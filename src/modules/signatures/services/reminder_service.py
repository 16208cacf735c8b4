from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from modules.signatures.models.signature_request import (
    NOTIFIED_SIGNER_STATUSES,
    ReminderSchedule,
    SignatureRequest,
    SignatureRequestStatus,
    SignatureRequirement,
)


def remindable_signers(signers: List[SignatureRequirement]) -> List[SignatureRequirement]:
    """Signers that hold their link and have neither signed nor declined.

    A sequential signer whose turn has not come is still PENDING and is left
    alone. Every IN_PROGRESS request has at least one SENT or VIEWED signer, so
    an empty result only happens when signer rows were changed outside the
    workflow.
    """
    return [s for s in signers if s.status in NOTIFIED_SIGNER_STATUSES]


def reminder_moments(expires_at: datetime, schedule: ReminderSchedule) -> List[datetime]:
    moments = {expires_at - timedelta(days=int(day)) for day in (schedule.reminder_days or [])}
    if schedule.final_reminder_hours_before_expiry:
        moments.add(expires_at - timedelta(hours=schedule.final_reminder_hours_before_expiry))
    return sorted(moments)


def latest_due_moment(request: SignatureRequest, now: datetime) -> Optional[datetime]:
    """The most recent scheduled reminder moment not yet covered by
    ``last_reminder_sent``, or None when nothing is due."""
    schedule = request.reminder_schedule
    if schedule is None or request.expires_at is None or now >= request.expires_at:
        return None
    since = request.last_reminder_sent or request.created_at
    due = [m for m in reminder_moments(request.expires_at, schedule) if since < m <= now]
    return due[-1] if due else None


class ReminderScheduler:
    """Answers "which requests owe a reminder now"; holds no timers."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def due_for_reminder(self, now: datetime) -> List[SignatureRequest]:
        candidates = (
            self.db.query(SignatureRequest)
            .join(ReminderSchedule, ReminderSchedule.request_id == SignatureRequest.id)
            .filter(
                SignatureRequest.status == SignatureRequestStatus.IN_PROGRESS,
                SignatureRequest.expires_at.isnot(None),
                SignatureRequest.expires_at > now,
            )
            .order_by(SignatureRequest.id.asc())
            .all()
        )
        return [
            request for request in candidates
            if latest_due_moment(request, now) is not None and remindable_signers(request.signers)
        ]
