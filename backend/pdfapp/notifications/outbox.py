"""
Queueing of notification intents into the outbox table.

State changes are committed before this runs. Every intent gets its own
commit and its own error boundary: a failure is logged and dropped, never
raised back into the webhook that produced it.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy.orm import Session

from pdfapp.core.config import settings
from pdfapp.core.logging import get_logger
from pdfapp.db.models.notification_outbox import NotificationOutbox
from pdfapp.notifications.intents import ADMIN_ALERT, NotificationIntent
from pdfapp.notifications.templates import AUDIENCE_ADMIN, render

logger = get_logger(__name__)


def _channel() -> str:
    return "email" if settings.ENABLE_EMAIL_NOTIFICATIONS else "log"


def enqueue_intent(db: Session, intent: NotificationIntent) -> list[NotificationOutbox]:
    """Render an intent into outbox rows (user copy, plus admin copy when an admin address is set)."""
    rows: list[NotificationOutbox] = []
    now = datetime.now(timezone.utc)

    for message in render(intent, settings.COMPANY_NAME):
        if message.audience == AUDIENCE_ADMIN:
            if not settings.ADMIN_EMAIL:
                continue
            to_email, kind = settings.ADMIN_EMAIL, ADMIN_ALERT
        else:
            to_email, kind = intent.user_email, intent.kind

        row = NotificationOutbox(
            status="pending",
            channel=_channel(),
            kind=kind,
            user_id=intent.user_id,
            to_email=to_email,
            subject=message.subject,
            body_text=message.body,
            next_attempt_at=now,
        )
        db.add(row)
        rows.append(row)

    db.flush()
    return rows


def dispatch_intents(db: Session, intents: Iterable[NotificationIntent]) -> int:
    """Queue each intent independently. Returns the number of intents queued."""
    queued = 0
    for intent in intents:
        try:
            enqueue_intent(db, intent)
            db.commit()
            queued += 1
            logger.info("queued %s notification for %s", intent.kind, intent.user_email)
        except Exception:
            db.rollback()
            logger.exception(
                "failed to queue %s notification for %s", intent.kind, intent.user_email
            )
    return queued
