from ..extensions import db
from .base import OrgScopedMixin, TimestampMixin, utcnow

QUEUE_STATUSES = ("queued", "processing", "completed", "failed")


class QueueItem(db.Model, OrgScopedMixin, TimestampMixin):
    __tablename__ = "processing_queue"
    __table_args__ = (
        db.Index("ix_processing_queue_eligible", "status", "priority", "scheduled_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    call_id = db.Column(db.Integer, db.ForeignKey("calls.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("sessions.id"))
    # queued -> processing -> completed | queued (retry) | failed
    status = db.Column(db.String(20), default="queued", nullable=False)
    priority = db.Column(db.Integer, default=0, nullable=False)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    max_attempts = db.Column(db.Integer, default=3, nullable=False)
    last_error = db.Column(db.Text)
    scheduled_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            "id": self.id,
            "call_id": self.call_id,
            "session_id": self.session_id,
            "status": self.status,
            "priority": self.priority,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
        }

    def __repr__(self) -> str:
        return f"<QueueItem id={self.id} call_id={self.call_id} status={self.status} attempts={self.attempts}>"
