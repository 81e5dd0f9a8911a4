from ..extensions import db
from .base import TimestampMixin


class Score(db.Model, TimestampMixin):
    __tablename__ = "scores"
    __table_args__ = (
        db.UniqueConstraint("session_id", "criterion_id", name="uq_scores_session_criterion"),
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("sessions.id"), nullable=False, index=True)
    # refers into the session's template snapshot, not the live criteria table
    criterion_id = db.Column(db.Integer, nullable=False)
    criteria_group_id = db.Column(db.Integer)
    value = db.Column(db.JSON)
    is_na = db.Column(db.Boolean, default=False, nullable=False)
    raw_score = db.Column(db.Float, default=0.0)
    normalized_score = db.Column(db.Float, default=0.0)
    weighted_score = db.Column(db.Float, default=0.0)
    is_auto_fail_triggered = db.Column(db.Boolean, default=False, nullable=False)
    # value could not be scored and was degraded to 0
    is_invalid = db.Column(db.Boolean, default=False, nullable=False)
    validation_error = db.Column(db.Text)
    comment = db.Column(db.Text)
    scored_by = db.Column(db.String(120))  # user id or "ai"
    scored_at = db.Column(db.DateTime)
    criterion_snapshot = db.Column(db.JSON)
    dispute_note = db.Column(db.Text)

    def to_dict(self):
        return {
            "criterion_id": self.criterion_id,
            "criteria_group_id": self.criteria_group_id,
            "value": self.value,
            "is_na": self.is_na,
            "raw_score": self.raw_score,
            "normalized_score": self.normalized_score,
            "weighted_score": self.weighted_score,
            "is_auto_fail_triggered": self.is_auto_fail_triggered,
            "is_invalid": self.is_invalid,
            "validation_error": self.validation_error,
            "comment": self.comment,
            "scored_by": self.scored_by,
            "dispute_note": self.dispute_note,
        }
