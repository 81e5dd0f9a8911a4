from ..extensions import db
from .base import OrgScopedMixin, TimestampMixin

SESSION_STATUSES = ("pending", "in_progress", "completed", "cancelled", "disputed", "reviewed")
OPEN_STATUSES = ("pending", "in_progress")


class GradingSession(db.Model, OrgScopedMixin, TimestampMixin):
    """One grading instance. Never deleted, only status-terminated."""
    __tablename__ = "sessions"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey("templates.id"), nullable=False)
    # pinned at creation; the snapshot is the owned copy scoring reads from
    template_version = db.Column(db.Integer, nullable=False)
    template_snapshot = db.Column(db.JSON, nullable=False)
    call_id = db.Column(db.Integer, db.ForeignKey("calls.id"), index=True)
    agent_id = db.Column(db.Integer)
    coach_id = db.Column(db.Integer)
    source = db.Column(db.String(20), default="manual")  # manual/auto

    status = db.Column(db.String(20), default="pending", nullable=False, index=True)
    total_score = db.Column(db.Float)
    total_possible = db.Column(db.Float)
    percentage_score = db.Column(db.Float)
    pass_status = db.Column(db.String(20), default="pending")  # pending/pass/fail
    has_auto_fail = db.Column(db.Boolean, default=False)
    auto_fail_criteria_ids = db.Column(db.JSON)

    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    reviewed_at = db.Column(db.DateTime)
    reviewed_by = db.Column(db.String(120))
    reviewer_notes = db.Column(db.Text)
    cancelled_at = db.Column(db.DateTime)
    cancelled_by = db.Column(db.String(120))
    cancellation_reason = db.Column(db.Text)
    disputed_at = db.Column(db.DateTime)
    disputed_by = db.Column(db.String(120))
    dispute_reason = db.Column(db.Text)

    scores = db.relationship("Score", backref="session", cascade="all, delete-orphan")

    @property
    def is_open(self):
        return self.status in OPEN_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "template_id": self.template_id,
            "template_version": self.template_version,
            "call_id": self.call_id,
            "source": self.source,
            "status": self.status,
            "percentage_score": self.percentage_score,
            "pass_status": self.pass_status,
            "has_auto_fail": self.has_auto_fail,
            "auto_fail_criteria_ids": self.auto_fail_criteria_ids or [],
        }

    def __repr__(self) -> str:
        return f"<GradingSession id={self.id} status={self.status}>"
