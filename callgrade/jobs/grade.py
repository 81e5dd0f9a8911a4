"""AI grading of a call against its session's frozen template.

``evaluate`` talks to the scorer and runs the scoring engine; it writes
nothing. ``grade_call`` persists the outcome in one transaction, or
nothing at all. ``process_queue`` is the RQ entrypoint for a worker.
"""

import time
from typing import Dict, List, Optional

from flask import current_app, has_app_context
from pydantic import BaseModel, ConfigDict, Field

from ..errors import StateConflictError
from ..extensions import db
from ..models import Call, GradingSession, Report, Setting
from ..models.base import utcnow
from ..scoring.criteria import TemplateSnapshot
from ..scoring.engine import CriterionScore, SessionResult, compute_session_result, score_criterion
from ..services import get_or_raise
from ..services.llm_scorer import ScorerResponse, build_grading_prompt, build_user_content, score_transcript
from ..services.sessions import missing_required, snapshot_of, transition_session, upsert_score
from ..services.transcripts import load_transcript

PIPELINE_ACTOR = "system:grading"


class EvaluationResult(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    scores: List[CriterionScore] = Field(default_factory=list)
    missing_criteria_ids: List[int] = Field(default_factory=list)
    dropped_criteria_ids: List[str] = Field(default_factory=list)
    analysis: ScorerResponse
    model_used: str
    processing_time_ms: int = 0
    token_usage: Dict[str, int] = Field(default_factory=dict)
    session_result: SessionResult


def _org_overrides(org_id: Optional[int]) -> Dict[str, object]:
    if org_id is None:
        return {}
    out = {}
    model = Setting.get_value(org_id, "ai.model")
    if model:
        out["model"] = model
    temperature = Setting.get_value(org_id, "ai.temperature")
    if temperature not in (None, ""):
        try:
            out["temperature"] = float(temperature)
        except ValueError:
            current_app.logger.warning("org %s has a non-numeric ai.temperature %r, using default", org_id, temperature)
    prefix = Setting.get_value(org_id, "ai.custom_prompt_prefix")
    if prefix:
        out["prefix"] = prefix
    return out


def evaluate(transcript: str, snapshot: TemplateSnapshot, org_id: Optional[int] = None) -> EvaluationResult:
    """Score a transcript. Provider errors propagate; bad criterion values do not."""
    started = time.monotonic()
    overrides = _org_overrides(org_id)
    reply = score_transcript(
        build_grading_prompt(snapshot, overrides.get("prefix")),
        build_user_content(transcript),
        model=overrides.get("model"),
        temperature=overrides.get("temperature"),
    )

    answers = {}
    dropped = []
    for answer in reply.data.criteria_scores:
        key = str(answer.criteria_id)
        if snapshot.criterion(key) is None:
            dropped.append(key)
            continue
        answers.setdefault(key, answer)
    if dropped:
        current_app.logger.info("dropped scores for unknown criteria %s", dropped)
    if reply.data.malformed_entries:
        current_app.logger.warning("dropped %d unreadable criterion entries from the scorer", reply.data.malformed_entries)

    scores = []
    missing = []
    for criterion in snapshot.criteria:
        answer = answers.get(str(criterion.id))
        if answer is None:
            missing.append(criterion.id)
            continue
        scored = score_criterion(
            criterion,
            answer.value,
            provider_auto_fail=answer.auto_fail_triggered,
            comment=answer.feedback,
        )
        if scored.invalid:
            current_app.logger.warning("criterion %s degraded to 0: %s", criterion.id, scored.error)
        scores.append(scored)

    if missing:
        current_app.logger.warning("scorer left criteria %s unanswered", missing)

    return EvaluationResult(
        scores=scores,
        missing_criteria_ids=missing,
        dropped_criteria_ids=dropped,
        analysis=reply.data,
        model_used=reply.model,
        processing_time_ms=int((time.monotonic() - started) * 1000),
        token_usage=reply.token_usage,
        session_result=compute_session_result(
            snapshot, scores, current_app.config.get("GRADING_DEFAULT_PASS_THRESHOLD", 70),
        ),
    )


def _write_report(session: GradingSession, call: Call, result: EvaluationResult) -> Report:
    report = Report.query.filter_by(session_id=session.id).first()
    if report is None:
        report = Report(org_id=session.org_id, session_id=session.id)
        db.session.add(report)
    analysis = result.analysis
    report.call_id = call.id
    report.percentage_score = result.session_result.percentage_score
    report.pass_status = result.session_result.pass_status
    report.has_auto_fail = result.session_result.has_auto_fail
    report.summary = analysis.summary
    report.strengths = analysis.strengths
    report.improvements = analysis.improvements
    report.action_items = analysis.action_items
    report.objections = [o.model_dump() for o in analysis.objections]
    report.sentiment = analysis.sentiment.model_dump()
    report.talk_ratio = analysis.talk_ratio
    report.competitor_mentions = analysis.competitor_mentions
    report.missing_criteria_ids = result.missing_criteria_ids
    report.model_used = result.model_used
    report.processing_time_ms = result.processing_time_ms
    report.token_usage = result.token_usage
    return report


def _discard(session: GradingSession, call: Call) -> str:
    current_app.logger.warning("session %s is %s; discarding grading result for call %s", session.id, session.status, call.id)
    call.status = "analyzed"
    call.analyzed_at = utcnow()
    call.last_error = f"Result discarded: session {session.id} was {session.status}"
    db.session.commit()
    return "discarded"


def grade_call(call_id: int, session_id: int) -> str:
    """Grade one call into its session. Returns completed, in_progress or discarded."""
    call = get_or_raise(Call, call_id, "Call")
    session = get_or_raise(GradingSession, session_id, "Session")
    if not session.is_open:
        return _discard(session, call)

    transcript = load_transcript(call)
    snapshot = snapshot_of(session)
    result = evaluate(transcript, snapshot, call.org_id)

    db.session.refresh(session)
    if not session.is_open:
        return _discard(session, call)

    try:
        if session.status == "pending":
            transition_session(session.id, "start", PIPELINE_ACTOR, commit=False)
        for scored in result.scores:
            upsert_score(session, scored, "ai", snapshot.criterion(scored.criterion_id))
        _write_report(session, call, result)

        missing = missing_required(session, snapshot)
        if missing:
            current_app.logger.warning("session %s left in progress, required criteria %s unscored", session.id, missing)
        else:
            transition_session(
                session.id, "complete", PIPELINE_ACTOR, commit=False,
                invalid_criteria_ids=result.session_result.invalid_criteria_ids,
            )

        call.status = "analyzed"
        call.last_error = None
        call.analyzed_at = utcnow()
        db.session.commit()
    except StateConflictError:
        # the session was cancelled between the refresh and our update
        db.session.rollback()
        session = db.session.get(GradingSession, session_id)
        call = db.session.get(Call, call_id)
        return _discard(session, call)
    except Exception:
        db.session.rollback()
        raise

    return "in_progress" if missing else "completed"


def process_queue(max_items: Optional[int] = None) -> int:
    """RQ entrypoint: run one queue batch inside an app context."""
    from ..services.queue import process_queue_batch

    if has_app_context():
        return process_queue_batch(max_items)
    from callgrade import create_app
    app = create_app()
    with app.app_context():
        return process_queue_batch(max_items)
