"""Processing queue for automated grading.

Items live in the ``processing_queue`` table and are polled, not pushed:
a cron hook, the poller script or an RQ job calls ``process_queue_batch``.
Several pollers may run at once; each item is claimed with a conditional
UPDATE (queued -> processing) so only one of them ever runs it.

The call row mirrors the item: pending -> processing -> analyzed, back to
pending when a retry is scheduled, failed when the item gives up.
"""

import time
from datetime import timedelta
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy import func

from ..errors import GradingError, StateConflictError, TerminalJobError
from ..extensions import db
from ..models import Call, GradingSession, QueueItem
from ..models.base import utcnow
from ..models.queue_item import QUEUE_STATUSES
from . import get_or_raise
from .sessions import create_session, transition_session
from .templates import resolve_template_for_call

LIVE_STATUSES = ("queued", "processing")
PIPELINE_ACTOR = "system:grading"


def _open_pipeline_session(call: Call) -> GradingSession:
    tpl = resolve_template_for_call(call)
    return create_session(
        tpl.id,
        call.org_id,
        call_id=call.id,
        agent_id=call.agent_id,
        source="auto",
        actor=PIPELINE_ACTOR,
        commit=False,
    )


def enqueue_grading_job(call_id: int, priority: int = 0, max_attempts: Optional[int] = None) -> QueueItem:
    """Queue a call for grading. At most one live item per call."""
    call = get_or_raise(Call, call_id, "Call")
    live = QueueItem.query.filter(QueueItem.call_id == call.id, QueueItem.status.in_(LIVE_STATUSES)).first()
    if live is not None:
        raise StateConflictError(f"Call {call.id} already has queue item {live.id} ({live.status})")

    session = _open_pipeline_session(call)
    item = QueueItem(
        org_id=call.org_id,
        call_id=call.id,
        session_id=session.id,
        status="queued",
        priority=priority or 0,
        attempts=0,
        max_attempts=max_attempts or current_app.config.get("GRADING_MAX_ATTEMPTS", 3),
        scheduled_at=utcnow(),
    )
    db.session.add(item)
    call.status = "pending"
    call.last_error = None
    db.session.commit()
    current_app.logger.info("queued call %s as item %s (priority %s, session %s)", call.id, item.id, item.priority, session.id)
    return item


def claim_item(item_id: int, now=None) -> bool:
    """Atomically move one item queued -> processing. False if someone else got it first."""
    now = now or utcnow()
    won = QueueItem.query.filter(
        QueueItem.id == item_id,
        QueueItem.status == "queued",
    ).update(
        {QueueItem.status: "processing", QueueItem.started_at: now},
        synchronize_session=False,
    )
    db.session.commit()
    if won != 1:
        current_app.logger.debug("queue item %s already claimed", item_id)
        return False
    return True


def claim_next_batch(max_items: int, now=None) -> List[QueueItem]:
    now = now or utcnow()
    rows = (
        db.session.query(QueueItem.id)
        .filter(QueueItem.status == "queued", QueueItem.scheduled_at <= now)
        .order_by(QueueItem.priority.desc(), QueueItem.scheduled_at.asc(), QueueItem.id.asc())
        .limit(max_items)
        .all()
    )
    claimed = []
    for (item_id,) in rows:
        if claim_item(item_id, now):
            claimed.append(db.session.get(QueueItem, item_id))
    return claimed


def backoff_delay(attempts: int) -> timedelta:
    base = float(current_app.config.get("GRADING_BACKOFF_BASE_MINUTES", 1))
    return timedelta(minutes=base * (2 ** attempts))


def _mark_completed(item: QueueItem) -> None:
    item.status = "completed"
    item.completed_at = utcnow()
    item.last_error = None
    db.session.commit()


def _mark_failed(item: QueueItem, exc: Exception) -> None:
    """Failure transition: backoff retry while attempts remain, otherwise terminal."""
    db.session.rollback()
    item = db.session.get(QueueItem, item.id)
    call = db.session.get(Call, item.call_id)
    if isinstance(exc, GradingError):
        message, retryable = exc.message, exc.retryable
    else:
        # outside the taxonomy (a locked database, a dropped connection): retry within budget
        message, retryable = f"{type(exc).__name__}: {exc}", True

    item.attempts = (item.attempts or 0) + 1
    item.last_error = message

    if retryable and item.attempts < item.max_attempts:
        item.status = "queued"
        item.scheduled_at = utcnow() + backoff_delay(item.attempts)
        item.started_at = None
        if call is not None:
            call.status = "pending"
            call.last_error = message
        db.session.commit()
        current_app.logger.warning(
            "queue item %s attempt %s/%s failed, retry at %s: %s",
            item.id, item.attempts, item.max_attempts, item.scheduled_at.isoformat(), message,
        )
        return

    terminal = TerminalJobError(item.id, item.attempts, message)
    item.status = "failed"
    item.completed_at = utcnow()
    if call is not None:
        call.status = "failed"
        call.last_error = terminal.message
    db.session.commit()
    current_app.logger.error("queue item %s failed permanently: %s", item.id, terminal.message)

    session = db.session.get(GradingSession, item.session_id) if item.session_id else None
    if session is not None and session.is_open:
        try:
            transition_session(session.id, "cancel", PIPELINE_ACTOR, reason=terminal.message)
        except StateConflictError:
            current_app.logger.warning("session %s moved on before it could be cancelled", session.id)


def process_item(item: QueueItem) -> str:
    # local import: jobs.grade imports this module for its RQ entrypoint
    from ..jobs.grade import grade_call

    started = time.monotonic()
    call = db.session.get(Call, item.call_id)
    if call is not None:
        call.status = "processing"
        db.session.commit()

    outcome = grade_call(item.call_id, item.session_id)
    _mark_completed(item)
    current_app.logger.info(
        "queue item %s (call %s) %s in %dms",
        item.id, item.call_id, outcome, int((time.monotonic() - started) * 1000),
    )
    return outcome


def process_queue_batch(max_items: Optional[int] = None, now=None) -> int:
    """Claim and run up to ``max_items`` eligible items; returns how many were run.

    One item failing never stops the rest of the batch.
    """
    max_items = max_items or current_app.config.get("GRADING_QUEUE_BATCH_SIZE", 10)
    processed = 0
    for item in claim_next_batch(max_items, now):
        try:
            process_item(item)
        except Exception as exc:
            if not isinstance(exc, GradingError) or not exc.retryable:
                current_app.logger.exception("queue item %s raised", item.id)
            _mark_failed(item, exc)
        processed += 1
    return processed


def retry_failed_item(item_id: int) -> QueueItem:
    """Manually requeue a failed item with a fresh attempt budget and a fresh session."""
    item = get_or_raise(QueueItem, item_id, "QueueItem")
    if item.status != "failed":
        raise StateConflictError(f"Queue item {item.id} is {item.status}, only failed items can be retried")
    live = QueueItem.query.filter(
        QueueItem.call_id == item.call_id,
        QueueItem.status.in_(LIVE_STATUSES),
        QueueItem.id != item.id,
    ).first()
    if live is not None:
        raise StateConflictError(f"Call {item.call_id} already has queue item {live.id} ({live.status})")

    call = get_or_raise(Call, item.call_id, "Call")
    session = db.session.get(GradingSession, item.session_id) if item.session_id else None
    if session is None or not session.is_open:
        session = _open_pipeline_session(call)

    item.session_id = session.id
    item.status = "queued"
    item.attempts = 0
    item.last_error = None
    item.scheduled_at = utcnow()
    item.started_at = None
    item.completed_at = None
    call.status = "pending"
    call.last_error = None
    db.session.commit()
    current_app.logger.info("queue item %s requeued by hand", item.id)
    return item


def queue_stats(org_id: Optional[int] = None) -> Dict[str, int]:
    q = db.session.query(QueueItem.status, func.count(QueueItem.id))
    if org_id is not None:
        q = q.filter(QueueItem.org_id == org_id)
    counts = {status: 0 for status in QUEUE_STATUSES}
    for status, n in q.group_by(QueueItem.status).all():
        counts[status] = n
    return counts
