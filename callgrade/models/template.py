from ..extensions import db
from .base import OrgScopedMixin, TimestampMixin

SCORING_METHODS = ("weighted", "simple_average", "pass_fail", "points", "custom_formula")
TEMPLATE_STATUSES = ("draft", "active", "archived")


class Template(db.Model, OrgScopedMixin, TimestampMixin):
    __tablename__ = "templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    scoring_method = db.Column(db.String(30), default="weighted", nullable=False)
    pass_threshold = db.Column(db.Float, default=70.0, nullable=False)
    status = db.Column(db.String(20), default="draft", nullable=False, index=True)  # draft/active/archived
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    version = db.Column(db.Integer, default=1, nullable=False)
    settings = db.Column(db.JSON)  # {"allow_partial_submission": false}

    criteria = db.relationship(
        "Criterion", backref="template", cascade="all, delete-orphan",
        order_by="Criterion.sort_order",
    )
    groups = db.relationship(
        "CriteriaGroup", backref="template", cascade="all, delete-orphan",
        order_by="CriteriaGroup.sort_order",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "scoring_method": self.scoring_method,
            "pass_threshold": self.pass_threshold,
            "status": self.status,
            "is_default": self.is_default,
            "version": self.version,
            "criteria_count": len(self.criteria),
        }

    def __repr__(self) -> str:
        return f"<Template id={self.id} name={self.name!r} status={self.status}>"


class CriteriaGroup(db.Model, TimestampMixin):
    __tablename__ = "criteria_groups"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey("templates.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    weight = db.Column(db.Float, default=0.0, nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)


class Criterion(db.Model, TimestampMixin):
    __tablename__ = "criteria"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey("templates.id", ondelete="CASCADE"), nullable=False, index=True)
    group_id = db.Column(db.Integer, db.ForeignKey("criteria_groups.id", ondelete="SET NULL"))
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    criteria_type = db.Column(db.String(30), nullable=False)
    config = db.Column(db.JSON)
    weight = db.Column(db.Float, default=0.0, nullable=False)
    max_score = db.Column(db.Float, default=100.0, nullable=False)
    is_required = db.Column(db.Boolean, default=True, nullable=False)
    is_auto_fail = db.Column(db.Boolean, default=False, nullable=False)
    auto_fail_threshold = db.Column(db.Float)
    scoring_guide = db.Column(db.Text)
    keywords = db.Column(db.JSON)  # ["budget", "timeline"]
    sort_order = db.Column(db.Integer, default=0, nullable=False)

    group = db.relationship("CriteriaGroup")

    def __repr__(self) -> str:
        return f"<Criterion id={self.id} type={self.criteria_type} weight={self.weight}>"
