from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from pdfapp.api.deps import verify_admin
from pdfapp.billing.timestamps import isoformat
from pdfapp.core.logging import get_logger
from pdfapp.db.models.notification_outbox import NotificationOutbox
from pdfapp.db.models.user import ROLE_ADMIN, ROLE_USER, User
from pdfapp.db.session import get_db

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(verify_admin)])


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@router.get("/debug/outbox")
def debug_outbox(
    limit: int = 20,
    db: Session = Depends(get_db),
):
    limit = max(1, min(limit, 100))
    rows = db.execute(
        select(NotificationOutbox).order_by(NotificationOutbox.created_at.desc()).limit(limit)
    ).scalars().all()
    return [
        {
            "id": str(r.id),
            "kind": r.kind,
            "channel": r.channel,
            "status": r.status,
            "attempts": r.attempts,
            "to_email": r.to_email,
            "subject": r.subject,
            "created_at": isoformat(r.created_at),
            "sent_at": isoformat(r.sent_at),
            "next_attempt_at": isoformat(r.next_attempt_at),
            "last_error": r.last_error,
            "user_id": str(r.user_id) if r.user_id else None,
        }
        for r in rows
    ]


@router.get("/users")
def list_users(
    page: int = 1,
    limit: int = 50,
    search: str = "",
    db: Session = Depends(get_db),
):
    page = max(1, page)
    limit = max(1, min(limit, 100))
    offset = (page - 1) * limit

    query = select(User)
    count_query = select(func.count()).select_from(User)
    if search:
        condition = User.email.ilike(f"%{_escape_like(search)}%", escape="\\")
        query = query.where(condition)
        count_query = count_query.where(condition)

    users = db.execute(query.order_by(User.created_at.desc()).limit(limit).offset(offset)).scalars().all()
    total = db.execute(count_query).scalar()

    return {
        "users": [
            {
                "id": str(u.id),
                "email": u.email,
                "name": u.name,
                "role": u.role,
                "plan": u.subscription_plan,
                "sub_status": u.subscription_status,
                "renewal_date": isoformat(u.subscription_current_period_end),
                "stripe_customer_id": u.stripe_customer_id,
                "stripe_subscription_id": u.stripe_subscription_id,
                "created_at": isoformat(u.created_at),
            }
            for u in users
        ],
        "total": total,
    }


@router.patch("/users/{user_id}/set-role")
def set_user_role(
    user_id: UUID,
    role: str,
    db: Session = Depends(get_db),
):
    role = role.strip().upper()
    if role not in (ROLE_ADMIN, ROLE_USER):
        raise HTTPException(status_code=400, detail="Invalid role")

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    user.role = role
    db.commit()
    db.refresh(user)
    logger.info("[ADMIN] set_role: %s -> role=%s", user.email, user.role)
    return {"id": str(user.id), "email": user.email, "role": user.role}

