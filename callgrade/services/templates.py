"""Template authoring and resolution.

Templates are authored as drafts, activated once their weights add up,
and frozen into a ``TemplateSnapshot`` whenever a session is created.
"""

import math
from typing import Any, Dict, List, Optional

from flask import current_app

from ..errors import StateConflictError, TemplateUnavailableError, ValidationError
from ..extensions import db
from ..models import Criterion, CriteriaGroup, Template
from ..models.template import SCORING_METHODS
from ..scoring.criteria import (
    CRITERIA_TYPES,
    CriterionSnapshot,
    GroupSnapshot,
    TemplateSnapshot,
    parse_config,
)
from ..scoring.engine import validate_weights
from . import get_or_raise


def _is_number(v) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def _check_criterion_input(entry: Dict[str, Any], position: int) -> None:
    if not isinstance(entry, dict):
        raise ValidationError(f"Criterion #{position + 1} must be an object")
    if not entry.get("name"):
        raise ValidationError(f"Criterion #{position + 1} needs a name")
    ctype = entry.get("criteria_type")
    if ctype not in CRITERIA_TYPES:
        raise ValidationError(f"Criterion {entry.get('name')!r} has unknown type {ctype!r}")
    parse_config(ctype, entry.get("config") or {})
    max_score = entry.get("max_score", 100)
    if not _is_number(max_score) or max_score <= 0:
        raise ValidationError(f"Criterion {entry.get('name')!r} needs a positive max_score")
    if not _is_number(entry.get("weight", 0)):
        raise ValidationError(f"Criterion {entry.get('name')!r} needs a numeric weight")
    threshold = entry.get("auto_fail_threshold")
    if threshold is not None and not _is_number(threshold):
        raise ValidationError(f"Criterion {entry.get('name')!r} needs a numeric auto_fail_threshold")


def create_template(
    org_id: int,
    name: str,
    scoring_method: str = "weighted",
    pass_threshold: float = 70,
    criteria: Optional[List[Dict[str, Any]]] = None,
    groups: Optional[List[Dict[str, Any]]] = None,
    description: Optional[str] = None,
    settings: Optional[Dict[str, Any]] = None,
) -> Template:
    """Create a draft template.

    ``groups`` is a list of ``{name, description, weight}``; a criterion
    joins a group by ``group_index`` into that list.
    """
    if not name:
        raise ValidationError("Template name is required")
    if scoring_method not in SCORING_METHODS:
        raise ValidationError(f"Unknown scoring method {scoring_method!r}")
    if not _is_number(pass_threshold) or not 0 <= pass_threshold <= 100:
        raise ValidationError("pass_threshold must be between 0 and 100")

    criteria = criteria or []
    groups = groups or []
    for i, g in enumerate(groups):
        if not isinstance(g, dict) or not _is_number(g.get("weight", 0)):
            raise ValidationError(f"Group #{i + 1} needs to be an object with a numeric weight")
    for i, entry in enumerate(criteria):
        _check_criterion_input(entry, i)
        gi = entry.get("group_index")
        if gi is not None and (not isinstance(gi, int) or isinstance(gi, bool) or not 0 <= gi < len(groups)):
            raise ValidationError(f"Criterion {entry['name']!r} references unknown group_index {gi}")

    tpl = Template(
        org_id=org_id,
        name=name,
        description=description,
        scoring_method=scoring_method,
        pass_threshold=pass_threshold,
        status="draft",
        version=1,
        settings=settings or {},
    )
    db.session.add(tpl)

    group_rows = []
    for i, g in enumerate(groups):
        row = CriteriaGroup(
            name=g.get("name") or f"Group {i + 1}",
            description=g.get("description"),
            weight=g.get("weight", 0),
            sort_order=g.get("sort_order", i),
        )
        tpl.groups.append(row)
        group_rows.append(row)

    for i, entry in enumerate(criteria):
        gi = entry.get("group_index")
        group = group_rows[gi] if gi is not None else None
        tpl.criteria.append(Criterion(
            name=entry["name"],
            description=entry.get("description"),
            criteria_type=entry["criteria_type"],
            config=entry.get("config") or {},
            weight=entry.get("weight", 0),
            max_score=entry.get("max_score", 100),
            is_required=entry.get("is_required", True),
            is_auto_fail=entry.get("is_auto_fail", False),
            auto_fail_threshold=entry.get("auto_fail_threshold"),
            scoring_guide=entry.get("scoring_guide"),
            keywords=entry.get("keywords") or [],
            sort_order=entry.get("sort_order", i),
            group=group,
        ))

    db.session.commit()
    current_app.logger.info("template %s created for org %s with %d criteria", tpl.id, org_id, len(criteria))
    return tpl


def activate_template(template_id: int) -> Template:
    """Make a template usable for grading.

    The first activation of a draft keeps version 1; re-activating an
    active template (after its criteria changed) bumps the version so new
    sessions can be told apart from old ones.
    """
    tpl = get_or_raise(Template, template_id, "Template")
    if tpl.status == "archived":
        raise StateConflictError(f"Template {tpl.id} is archived")
    if not tpl.criteria:
        raise ValidationError("An active template needs at least one criterion")
    validate_weights(build_snapshot(tpl).criteria)

    if tpl.status == "active":
        tpl.version = (tpl.version or 1) + 1
    tpl.status = "active"
    db.session.commit()
    current_app.logger.info("template %s activated at version %s", tpl.id, tpl.version)
    return tpl


def set_default_template(template_id: int) -> Template:
    """Make this the organization's only default template."""
    tpl = get_or_raise(Template, template_id, "Template")
    if tpl.status != "active":
        raise StateConflictError(f"Template {tpl.id} must be active to become the default")
    Template.query.filter(
        Template.org_id == tpl.org_id,
        Template.id != tpl.id,
        Template.is_default.is_(True),
    ).update({Template.is_default: False}, synchronize_session=False)
    tpl.is_default = True
    db.session.commit()
    return tpl


def archive_template(template_id: int) -> Template:
    tpl = get_or_raise(Template, template_id, "Template")
    tpl.status = "archived"
    tpl.is_default = False
    db.session.commit()
    return tpl


def resolve_template_for_call(call) -> Template:
    """Explicit binding on the call, else the org default, else the newest active template."""
    if call.template_id:
        tpl = db.session.get(Template, call.template_id)
        if tpl is None or tpl.org_id != call.org_id or tpl.status != "active":
            raise TemplateUnavailableError(f"Template {call.template_id} bound to call {call.id} is not active")
        return tpl

    active = Template.query.filter_by(org_id=call.org_id, status="active")
    tpl = active.filter_by(is_default=True).first()
    if tpl is None:
        tpl = active.order_by(Template.created_at.desc(), Template.id.desc()).first()
    if tpl is None:
        raise TemplateUnavailableError(f"No active template for organization {call.org_id}")
    return tpl


def build_snapshot(template: Template) -> TemplateSnapshot:
    """Owned, immutable copy of the template as it is right now."""
    groups = [
        GroupSnapshot(
            id=g.id,
            name=g.name,
            description=g.description,
            weight=g.weight or 0,
            sort_order=g.sort_order or 0,
        )
        for g in sorted(template.groups, key=lambda g: g.sort_order or 0)
    ]
    criteria = [
        CriterionSnapshot(
            id=c.id,
            name=c.name,
            description=c.description,
            criteria_type=c.criteria_type,
            config=dict(c.config or {}),
            weight=c.weight or 0,
            max_score=c.max_score if c.max_score is not None else 100,
            is_required=bool(c.is_required),
            is_auto_fail=bool(c.is_auto_fail),
            auto_fail_threshold=c.auto_fail_threshold,
            scoring_guide=c.scoring_guide,
            keywords=list(c.keywords or []),
            group_id=c.group_id,
            sort_order=c.sort_order or 0,
        )
        for c in sorted(template.criteria, key=lambda c: c.sort_order or 0)
    ]
    return TemplateSnapshot(
        id=template.id,
        name=template.name,
        scoring_method=template.scoring_method or "weighted",
        pass_threshold=template.pass_threshold if template.pass_threshold is not None else 70,
        version=template.version or 1,
        settings=dict(template.settings or {}),
        criteria=criteria,
        groups=groups,
    )
