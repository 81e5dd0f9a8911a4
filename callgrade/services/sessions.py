"""Session state machine.

    pending -> in_progress -> completed -> reviewed
                                 |             |
                                 +--> disputed <+
    pending | in_progress -> cancelled

Every status change is a conditional UPDATE on the current status, so two
writers racing on the same session cannot both win. Each transition also
appends a row to ``session_audit_log`` in the same transaction.
"""

from typing import Any, Dict, Iterable, List, Optional

from flask import current_app

from ..errors import (
    NotFoundError,
    StateConflictError,
    TemplateUnavailableError,
    ValidationError,
)
from ..extensions import db
from ..models import GradingSession, QueueItem, Score, SessionAuditLog, Template
from ..models.base import utcnow
from ..scoring.criteria import TemplateSnapshot, parse_config, parse_value
from ..scoring.engine import CriterionScore, compute_session_result, score_criterion
from . import get_or_raise
from .templates import build_snapshot


# action -> (allowed source statuses, target status)
TRANSITIONS = {
    "start": (("pending",), "in_progress"),
    "complete": (("in_progress",), "completed"),
    "review": (("completed",), "reviewed"),
    "dispute": (("completed", "reviewed"), "disputed"),
    "cancel": (("pending", "in_progress"), "cancelled"),
}


def record_audit(session_id: int, actor: str, action: str, **details) -> SessionAuditLog:
    entry = SessionAuditLog(session_id=session_id, actor=actor, action=action, details=details)
    db.session.add(entry)
    return entry


def snapshot_of(session: GradingSession) -> TemplateSnapshot:
    return TemplateSnapshot.model_validate(session.template_snapshot)


def create_session(
    template_id: int,
    org_id: int,
    call_id: Optional[int] = None,
    agent_id: Optional[int] = None,
    coach_id: Optional[int] = None,
    source: str = "manual",
    actor: str = "system",
    commit: bool = True,
) -> GradingSession:
    """Open a session on a frozen copy of an active template."""
    tpl = get_or_raise(Template, template_id, "Template")
    if tpl.org_id != org_id:
        raise NotFoundError("Template", template_id)
    if tpl.status != "active":
        raise TemplateUnavailableError(f"Template {tpl.id} is not active")

    snapshot = build_snapshot(tpl)
    session = GradingSession(
        org_id=org_id,
        template_id=tpl.id,
        template_version=tpl.version,
        template_snapshot=snapshot.model_dump(mode="json"),
        call_id=call_id,
        agent_id=agent_id,
        coach_id=coach_id,
        source=source,
        status="pending",
        pass_status="pending",
    )
    db.session.add(session)
    db.session.flush()
    record_audit(session.id, actor, "created", template_id=tpl.id, template_version=tpl.version, source=source)
    if commit:
        db.session.commit()
    return session


def _scored_ids(session_id: int) -> set:
    rows = db.session.query(Score.criterion_id).filter(Score.session_id == session_id).all()
    return {r[0] for r in rows}


def missing_required(session: GradingSession, snapshot: Optional[TemplateSnapshot] = None) -> List[int]:
    snapshot = snapshot or snapshot_of(session)
    scored = _scored_ids(session.id)
    return [c.id for c in snapshot.criteria if c.is_required and c.id not in scored]


def _persisted_scores(session: GradingSession, snapshot: TemplateSnapshot) -> List[CriterionScore]:
    out = []
    rows = Score.query.filter_by(session_id=session.id).all()
    for row in rows:
        criterion = snapshot.criterion(row.criterion_id)
        if criterion is None:
            continue
        provider_flag = bool(row.is_auto_fail_triggered) and criterion.is_auto_fail
        out.append(score_criterion(
            criterion, row.value, is_na=bool(row.is_na), provider_auto_fail=provider_flag, comment=row.comment,
        ))
    return out


def _completion_fields(session: GradingSession) -> Dict[str, Any]:
    snapshot = snapshot_of(session)
    if not snapshot.settings.get("allow_partial_submission"):
        missing = missing_required(session, snapshot)
        if missing:
            raise StateConflictError(f"Session {session.id} is missing required criteria: {missing}")
    result = compute_session_result(
        snapshot,
        _persisted_scores(session, snapshot),
        current_app.config.get("GRADING_DEFAULT_PASS_THRESHOLD", 70),
    )
    return {
        GradingSession.total_score: result.total_score,
        GradingSession.total_possible: result.total_possible,
        GradingSession.percentage_score: result.percentage_score,
        GradingSession.pass_status: result.pass_status,
        GradingSession.has_auto_fail: result.has_auto_fail,
        GradingSession.auto_fail_criteria_ids: result.auto_fail_criteria_ids,
    }


def transition_session(
    session_id: int,
    action: str,
    actor: str,
    reason: Optional[str] = None,
    commit: bool = True,
    **details,
) -> GradingSession:
    """Apply ``action`` to a session and append the audit entry.

    Raises ValidationError for an unknown action and StateConflictError when
    the session is not in a source status for it (including losing a race).
    """
    if action not in TRANSITIONS:
        raise ValidationError(f"Unknown session action {action!r}")
    allowed_from, target = TRANSITIONS[action]

    session = get_or_raise(GradingSession, session_id, "Session")
    previous = session.status
    if previous not in allowed_from:
        raise StateConflictError(f"Cannot {action} session {session.id} in status {previous}")

    now = utcnow()
    values = {GradingSession.status: target}
    if action == "start":
        values[GradingSession.started_at] = now
    elif action == "complete":
        values.update(_completion_fields(session))
        values[GradingSession.completed_at] = now
    elif action == "review":
        values.update({
            GradingSession.reviewed_at: now,
            GradingSession.reviewed_by: actor,
            GradingSession.reviewer_notes: reason,
        })
    elif action == "dispute":
        if not reason:
            raise ValidationError("A dispute needs a reason")
        values.update({
            GradingSession.disputed_at: now,
            GradingSession.disputed_by: actor,
            GradingSession.dispute_reason: reason,
        })
    elif action == "cancel":
        busy = QueueItem.query.filter_by(session_id=session.id, status="processing").first()
        if busy is not None:
            raise StateConflictError(f"Session {session.id} is being graded by queue item {busy.id}")
        values.update({
            GradingSession.cancelled_at: now,
            GradingSession.cancelled_by: actor,
            GradingSession.cancellation_reason: reason,
        })

    won = GradingSession.query.filter(
        GradingSession.id == session.id,
        GradingSession.status.in_(allowed_from),
    ).update(values, synchronize_session="fetch")
    if won != 1:
        db.session.rollback()
        raise StateConflictError(f"Session {session_id} changed status concurrently")

    record_audit(session.id, actor, action, previous_status=previous, reason=reason, **details)
    if commit:
        db.session.commit()
    current_app.logger.info("session %s %s by %s (%s -> %s)", session.id, action, actor, previous, target)
    return session


def upsert_score(session: GradingSession, scored: CriterionScore, scored_by: str, criterion=None) -> Score:
    """Insert or overwrite the single score row for (session, criterion)."""
    row = Score.query.filter_by(session_id=session.id, criterion_id=scored.criterion_id).first()
    if row is None:
        row = Score(session_id=session.id, criterion_id=scored.criterion_id)
        db.session.add(row)
    row.criteria_group_id = scored.group_id
    row.value = scored.value
    row.is_na = scored.is_na
    row.raw_score = scored.raw_score
    row.normalized_score = scored.normalized_score
    row.weighted_score = scored.weighted_score
    row.is_auto_fail_triggered = scored.is_auto_fail_triggered
    row.is_invalid = scored.invalid
    row.validation_error = scored.error
    row.comment = scored.comment
    row.scored_by = scored_by
    row.scored_at = utcnow()
    if criterion is not None:
        row.criterion_snapshot = criterion.model_dump(mode="json")
    return row


def submit_scores(session_id: int, entries: Iterable[Dict[str, Any]], actor: str) -> GradingSession:
    """Manual scoring.

    ``entries`` are ``{criterion_id, value, is_na, comment}``. Every entry
    is checked against the snapshot before anything is written.
    """
    session = get_or_raise(GradingSession, session_id, "Session")
    if not session.is_open:
        raise StateConflictError(f"Session {session.id} is {session.status}; scores can no longer change")

    entries = list(entries)
    if not entries:
        raise ValidationError("No scores submitted")
    snapshot = snapshot_of(session)

    checked = []
    for e in entries:
        criterion = snapshot.criterion(e.get("criterion_id"))
        if criterion is None:
            raise ValidationError(f"Unknown criterion {e.get('criterion_id')!r}", criterion_id=e.get("criterion_id"))
        is_na = bool(e.get("is_na", False))
        if not is_na:
            try:
                parse_value(criterion.criteria_type, e.get("value"), parse_config(criterion.criteria_type, criterion.config))
            except ValidationError as exc:
                raise ValidationError(f"Criterion {criterion.id}: {exc.message}", criterion_id=criterion.id) from exc
        checked.append((criterion, e, is_na))

    if session.status == "pending":
        transition_session(session.id, "start", actor, commit=False)

    for criterion, e, is_na in checked:
        scored = score_criterion(criterion, e.get("value"), is_na=is_na, comment=e.get("comment"))
        upsert_score(session, scored, actor, criterion)

    record_audit(session.id, actor, "score_updated", criterion_ids=[c.id for c, _, _ in checked])
    db.session.commit()
    return session


def annotate_dispute(session_id: int, criterion_id: int, note: str, actor: str) -> Score:
    """Attach a note to one score of a disputed session. Scores themselves stay untouched."""
    session = get_or_raise(GradingSession, session_id, "Session")
    if session.status != "disputed":
        raise StateConflictError(f"Session {session.id} is not disputed")
    if not note:
        raise ValidationError("Dispute note is empty")
    row = Score.query.filter_by(session_id=session.id, criterion_id=criterion_id).first()
    if row is None:
        raise NotFoundError("Score", criterion_id)
    row.dispute_note = note
    record_audit(session.id, actor, "dispute_note", criterion_id=criterion_id)
    db.session.commit()
    return row


def compute_session_composite(session_id: int) -> Dict[str, Any]:
    """Recompute the composite from persisted score values and the snapshot alone."""
    session = get_or_raise(GradingSession, session_id, "Session")
    snapshot = snapshot_of(session)
    result = compute_session_result(
        snapshot,
        _persisted_scores(session, snapshot),
        current_app.config.get("GRADING_DEFAULT_PASS_THRESHOLD", 70),
    )
    out = result.model_dump()
    out["percentage"] = result.percentage_score
    out["session_id"] = session.id
    out["status"] = session.status
    out["missing_required_ids"] = missing_required(session, snapshot)
    return out


def session_audit_trail(session_id: int) -> List[Dict[str, Any]]:
    get_or_raise(GradingSession, session_id, "Session")
    rows = (
        SessionAuditLog.query
        .filter_by(session_id=session_id)
        .order_by(SessionAuditLog.created_at.asc(), SessionAuditLog.id.asc())
        .all()
    )
    return [r.to_dict() for r in rows]
