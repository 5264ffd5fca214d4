import time
from datetime import datetime, timezone, timedelta
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from pdfapp.core.config import settings
from pdfapp.core.logging import get_logger, setup_logging
from pdfapp.db.session import get_db
from pdfapp.db.models.notification_outbox import NotificationOutbox
from pdfapp.notifications.email_sender import send_email, EmailSendError
from pdfapp.notifications.intents import ADMIN_ALERT


logger = get_logger("notifications_worker")

BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]  # 30s, 2m, 10m, 30m, 2h
MAX_ATTEMPTS = 8
STALE_SENDING_AFTER = timedelta(minutes=5)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def enqueue_admin_alert(db: Session, failed_row: NotificationOutbox):
    """
    Enqueue a log-only admin alert when a notification becomes terminal-failed.
    """
    try:
        # Never alert on admin alerts
        if failed_row.kind == ADMIN_ALERT:
            return

        admin_email = settings.ADMIN_EMAIL or "ADMIN_EMAIL_NOT_SET"

        subject = f"ADMIN ALERT: notification failed ({failed_row.id})"
        body = (
            f"ADMIN_EMAIL: {admin_email}\n\n"
            f"id: {failed_row.id}\n"
            f"kind: {failed_row.kind}\n"
            f"channel: {failed_row.channel}\n"
            f"to_email: {failed_row.to_email}\n"
            f"subject: {failed_row.subject}\n"
            f"attempts: {failed_row.attempts}\n"
            f"last_error: {failed_row.last_error}\n"
        )

        alert_row = NotificationOutbox(
            status="pending",
            channel="log",
            kind=ADMIN_ALERT,
            user_id=failed_row.user_id,
            to_email=admin_email,
            subject=subject,
            body_text=body,
            next_attempt_at=_now(),
        )

        db.add(alert_row)
        db.flush()

    except Exception as e:
        logger.error(f"[ADMIN ALERT FAILED] {e}")


def claim_batch(db: Session, batch_size: int | None = None) -> List[NotificationOutbox]:
    now = _now()
    stale_cutoff = now - STALE_SENDING_AFTER

    stmt = (
        select(NotificationOutbox)
        .where(
            NotificationOutbox.next_attempt_at <= now,
            (
                (NotificationOutbox.status == "pending")
                | (
                    (NotificationOutbox.status == "sending")
                    & (NotificationOutbox.updated_at < stale_cutoff)
                )
            ),
        )
        .order_by(NotificationOutbox.created_at.asc())
        .limit(batch_size or settings.NOTIFICATIONS_BATCH_SIZE)
        .with_for_update(skip_locked=True)
    )

    rows = list(db.execute(stmt).scalars().all())

    for row in rows:
        row.status = "sending"
        row.attempts = (row.attempts or 0) + 1
        row.updated_at = now

    db.commit()
    return rows


def mark_sent(db: Session, row: NotificationOutbox) -> None:
    row.status = "sent"
    row.sent_at = _now()
    row.last_error = None
    row.next_attempt_at = None
    row.updated_at = _now()
    db.flush()


def mark_dead(db: Session, row: NotificationOutbox, reason: str) -> None:
    row.status = "dead"
    row.last_error = reason[:2000]
    row.next_attempt_at = None
    row.updated_at = _now()

    # Terminal row goes out before the alert that references it
    db.flush()

    enqueue_admin_alert(db, row)


def mark_retry(db: Session, row: NotificationOutbox, err: Exception) -> None:
    if (row.attempts or 0) >= MAX_ATTEMPTS:
        mark_dead(db, row, str(err))
        return

    row.last_error = str(err)[:2000]
    row.updated_at = _now()

    idx = min(max((row.attempts or 1) - 1, 0), len(BACKOFF_SECONDS) - 1)
    row.next_attempt_at = _now() + timedelta(seconds=BACKOFF_SECONDS[idx])
    row.status = "pending"
    db.flush()


def process_row(row: NotificationOutbox) -> None:
    """
    Log-channel rows, and every row while email is disabled, are only logged.
    Email rows go out over SMTP.
    """
    to_email = (row.to_email or "").strip()
    subject = (row.subject or "").strip()
    body = row.body_text or ""

    if row.channel != "email" or not settings.ENABLE_EMAIL_NOTIFICATIONS:
        preview = (body[:500] + "...") if len(body) > 500 else body
        logger.info(
            "OUTBOX LOG-ONLY: id=%s kind=%s to=%s subject=%s body=%s",
            row.id,
            row.kind,
            to_email,
            subject,
            preview,
        )
        return

    send_email(to_email=to_email, subject=subject, body=body)


def run_once(db: Session, batch_size: int | None = None) -> int:
    """Claim and process one batch. Returns the number of rows claimed."""
    rows = claim_batch(db, batch_size)
    logger.info("claim_batch returned %d rows", len(rows))

    for row in rows:
        row_id = row.id
        try:
            process_row(row)
            mark_sent(db, row)
            db.commit()
            logger.info("outbox row completed id=%s to=%s", row_id, row.to_email)

        except EmailSendError as e:
            db.rollback()
            logger.warning("email send failed (will retry): id=%s err=%s", row_id, e)
            mark_retry(db, row, e)
            db.commit()

        except Exception as e:
            db.rollback()
            logger.exception("row processing failed: id=%s", row_id)
            mark_retry(db, row, e)
            db.commit()

    return len(rows)


def main(once: bool = False) -> None:
    setup_logging()
    logger.info("notifications_worker starting (once=%s)", once)

    while True:
        try:
            db_gen = get_db()
            db = next(db_gen)
            try:
                claimed = run_once(db)
            finally:
                db_gen.close()

            if once:
                logger.info("processed batch; exiting (once)")
                return
            if not claimed:
                time.sleep(settings.NOTIFICATIONS_POLL_SECONDS)

        except Exception:
            if once:
                raise
            logger.exception("worker loop crashed; sleeping then retrying")
            time.sleep(2)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser()
    parser.add_argument("--once", action="store_true")
    args = parser.parse_args()

    main(once=args.once)
