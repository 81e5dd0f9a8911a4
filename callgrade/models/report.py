from ..extensions import db
from .base import OrgScopedMixin, TimestampMixin


class Report(db.Model, OrgScopedMixin, TimestampMixin):
    """Summary artifact written alongside the scores of an automated evaluation."""
    __tablename__ = "reports"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("sessions.id"), nullable=False, unique=True)
    call_id = db.Column(db.Integer, db.ForeignKey("calls.id"), index=True)
    percentage_score = db.Column(db.Float)
    pass_status = db.Column(db.String(20))
    has_auto_fail = db.Column(db.Boolean, default=False)
    # coaching narrative from the scorer
    summary = db.Column(db.Text)
    strengths = db.Column(db.JSON)
    improvements = db.Column(db.JSON)
    action_items = db.Column(db.JSON)
    objections = db.Column(db.JSON)
    sentiment = db.Column(db.JSON)
    talk_ratio = db.Column(db.Float)
    competitor_mentions = db.Column(db.JSON)
    missing_criteria_ids = db.Column(db.JSON)
    model_used = db.Column(db.String(80))
    processing_time_ms = db.Column(db.Integer)
    token_usage = db.Column(db.JSON)
