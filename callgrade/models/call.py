from ..extensions import db
from .base import OrgScopedMixin, TimestampMixin

CALL_STATUSES = ("pending", "processing", "analyzed", "failed")


class Call(db.Model, OrgScopedMixin, TimestampMixin):
    __tablename__ = "calls"

    id = db.Column(db.Integer, primary_key=True)
    # OrgScopedMixin: org_id
    agent_id = db.Column(db.Integer)  # users.id of the rep on the call
    source = db.Column(db.String(30), default="manual")  # manual/webhook/upload/google_meet/calendar/api
    title = db.Column(db.String(255))
    # mirrors the queue: pending -> processing -> analyzed | failed
    status = db.Column(db.String(20), default="pending", nullable=False, index=True)
    transcript_text = db.Column(db.Text)
    # optional explicit rubric; otherwise the org default is used
    template_id = db.Column(db.Integer, db.ForeignKey("templates.id"))
    last_error = db.Column(db.Text)
    analyzed_at = db.Column(db.DateTime)
    call_timestamp = db.Column(db.DateTime)
    duration_sec = db.Column(db.Integer)
    call_metadata = db.Column(db.JSON)

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "status": self.status,
            "source": self.source,
            "title": self.title,
            "template_id": self.template_id,
            "last_error": self.last_error,
            "analyzed_at": self.analyzed_at.isoformat() if self.analyzed_at else None,
        }

    def __repr__(self) -> str:
        return f"<Call id={self.id} status={self.status}>"
