import uuid
from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from pdfapp.db.base import Base


class NotificationOutbox(Base):
    __tablename__ = "notifications_outbox"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','sending','sent','dead')",
            name="outbox_status_valid_values",
        ),
        Index("ix_notifications_outbox_status_next", "status", "next_attempt_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    sent_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), nullable=False, default="pending", server_default="pending")
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    # NULL once the row is terminal (sent/dead)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True, server_default=func.now())

    last_error = Column(Text, nullable=True)

    kind = Column(String(40), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=True)

    channel = Column(String(20), nullable=False, default="log", server_default="log")

    to_email = Column(Text, nullable=False)
    subject = Column(Text, nullable=False)
    body_text = Column(Text, nullable=False)
