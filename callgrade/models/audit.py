from ..extensions import db
from .base import utcnow


class SessionAuditLog(db.Model):
    """Append-only trail of session transitions; rows are never updated."""
    __tablename__ = "session_audit_log"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("sessions.id"), nullable=False, index=True)
    actor = db.Column(db.String(120), nullable=False)
    action = db.Column(db.String(40), nullable=False)
    details = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "actor": self.actor,
            "action": self.action,
            "details": self.details or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
