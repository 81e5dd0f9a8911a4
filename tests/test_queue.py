import threading
from datetime import timedelta

import pytest

from callgrade import create_app
from callgrade.errors import StateConflictError, TemplateUnavailableError, TransientProviderError
from callgrade.extensions import db
from callgrade.jobs.grade import process_queue
from callgrade.models import Call, GradingSession, Organization, QueueItem, SessionAuditLog
from callgrade.models.base import utcnow
from callgrade.services.queue import (
    claim_item,
    claim_next_batch,
    enqueue_grading_job,
    process_queue_batch,
    queue_stats,
    retry_failed_item,
)
from callgrade.services.templates import activate_template, create_template
from config import TestConfig

from conftest import SCENARIO_CRITERIA, TRANSCRIPT, scorer_reply


def _good_reply(tpl):
    scale_id, pf_id = [c.id for c in tpl.criteria]
    return scorer_reply([
        {"criteriaId": scale_id, "value": {"value": 8}},
        {"criteriaId": pf_id, "value": {"passed": True}},
    ])


def _later(minutes):
    return utcnow() + timedelta(minutes=minutes)


def test_enqueue_creates_pending_session_and_item(app, make_template, make_call):
    tpl = make_template()
    call = make_call()
    item = enqueue_grading_job(call.id, priority=5)
    assert item.status == "queued" and item.priority == 5 and item.max_attempts == 3
    session = db.session.get(GradingSession, item.session_id)
    assert session.status == "pending" and session.source == "auto"
    assert session.template_version == tpl.version
    assert db.session.get(Call, call.id).status == "pending"


def test_one_live_item_per_call(app, make_template, make_call):
    make_template()
    call = make_call()
    enqueue_grading_job(call.id)
    with pytest.raises(StateConflictError):
        enqueue_grading_job(call.id)


def test_enqueue_without_active_template(app, make_call):
    call = make_call()
    with pytest.raises(TemplateUnavailableError):
        enqueue_grading_job(call.id)


def test_claim_is_exclusive(app, make_template, make_call):
    make_template()
    item = enqueue_grading_job(make_call().id)
    assert claim_item(item.id) is True
    assert claim_item(item.id) is False
    assert db.session.get(QueueItem, item.id).status == "processing"


def test_batch_order_priority_then_schedule(app, make_template, make_call):
    make_template()
    low_old = enqueue_grading_job(make_call().id, priority=0)
    high = enqueue_grading_job(make_call().id, priority=10)
    low_new = enqueue_grading_job(make_call().id, priority=0)
    low_old.scheduled_at = utcnow() - timedelta(minutes=10)
    db.session.commit()

    claimed = claim_next_batch(3, now=_later(1))
    assert [i.id for i in claimed] == [high.id, low_old.id, low_new.id]


def test_future_items_are_not_eligible(app, make_template, make_call):
    make_template()
    item = enqueue_grading_job(make_call().id)
    item.scheduled_at = _later(30)
    db.session.commit()
    assert claim_next_batch(10) == []


def test_successful_batch(app, make_template, make_call, monkeypatch):
    tpl = make_template()
    call = make_call()
    item = enqueue_grading_job(call.id)
    monkeypatch.setattr("callgrade.jobs.grade.score_transcript", lambda *a, **kw: _good_reply(tpl))

    assert process_queue_batch(10) == 1
    item = db.session.get(QueueItem, item.id)
    assert item.status == "completed" and item.completed_at is not None
    assert db.session.get(Call, call.id).status == "analyzed"
    assert db.session.get(GradingSession, item.session_id).status == "completed"


def test_retry_path_ends_failed_after_max_attempts(app, make_template, make_call, monkeypatch):
    make_template()
    call = make_call()
    item = enqueue_grading_job(call.id, max_attempts=3)

    def fail(*a, **kw):
        raise TransientProviderError("upstream timeout")

    monkeypatch.setattr("callgrade.jobs.grade.score_transcript", fail)

    before = utcnow()
    assert process_queue_batch(10) == 1
    row = db.session.get(QueueItem, item.id)
    assert (row.status, row.attempts) == ("queued", 1)
    assert row.scheduled_at >= before + timedelta(minutes=2)
    assert db.session.get(Call, call.id).status == "pending"

    # not eligible until the backoff has passed
    assert process_queue_batch(10) == 0

    before = utcnow()
    assert process_queue_batch(10, now=_later(3)) == 1
    row = db.session.get(QueueItem, item.id)
    assert (row.status, row.attempts) == ("queued", 2)
    assert row.scheduled_at >= before + timedelta(minutes=4)

    assert process_queue_batch(10, now=_later(10)) == 1
    row = db.session.get(QueueItem, item.id)
    assert (row.status, row.attempts) == ("failed", 3)
    assert "upstream timeout" in row.last_error

    failed_call = db.session.get(Call, call.id)
    assert failed_call.status == "failed"
    assert "upstream timeout" in failed_call.last_error
    assert db.session.get(GradingSession, row.session_id).status == "cancelled"

    # never a fourth attempt
    assert process_queue_batch(10, now=_later(60)) == 0


def test_non_retryable_failure_is_terminal_at_once(app, make_template, make_call):
    make_template()
    call = make_call(transcript="too short")
    item = enqueue_grading_job(call.id)
    assert process_queue_batch(10) == 1
    row = db.session.get(QueueItem, item.id)
    assert (row.status, row.attempts) == ("failed", 1)
    assert db.session.get(Call, call.id).status == "failed"


def test_one_bad_item_does_not_stop_the_batch(app, make_template, make_call, monkeypatch):
    tpl = make_template()
    bad = enqueue_grading_job(make_call(transcript=None).id, priority=10)
    good = enqueue_grading_job(make_call().id)
    monkeypatch.setattr("callgrade.jobs.grade.score_transcript", lambda *a, **kw: _good_reply(tpl))

    assert process_queue_batch(10) == 2
    assert db.session.get(QueueItem, bad.id).status == "queued"
    assert db.session.get(QueueItem, good.id).status == "completed"


def test_unexpected_exception_retries_within_budget(app, make_template, make_call, monkeypatch):
    make_template()
    call = make_call()
    item = enqueue_grading_job(call.id, max_attempts=3)

    def locked(*a, **kw):
        raise RuntimeError("database is locked")

    monkeypatch.setattr("callgrade.jobs.grade.score_transcript", locked)
    assert process_queue_batch(10) == 1
    row = db.session.get(QueueItem, item.id)
    assert (row.status, row.attempts) == ("queued", 1)
    assert "RuntimeError: database is locked" in row.last_error
    assert db.session.get(Call, call.id).status == "pending"

    assert process_queue_batch(10, now=_later(3)) == 1
    assert process_queue_batch(10, now=_later(10)) == 1
    row = db.session.get(QueueItem, item.id)
    assert (row.status, row.attempts) == ("failed", 3)
    assert db.session.get(Call, call.id).status == "failed"


def test_template_unavailable_is_terminal_at_once(app, make_template, make_call, monkeypatch):
    make_template()
    item = enqueue_grading_job(make_call().id)

    def gone(*a, **kw):
        raise TemplateUnavailableError("template archived")

    monkeypatch.setattr("callgrade.jobs.grade.score_transcript", gone)
    assert process_queue_batch(10) == 1
    row = db.session.get(QueueItem, item.id)
    assert (row.status, row.attempts) == ("failed", 1)


def test_terminal_failure_is_audited(app, make_template, make_call):
    make_template()
    item = enqueue_grading_job(make_call(transcript="short").id)
    process_queue_batch(10)
    actions = [e.action for e in SessionAuditLog.query.filter_by(session_id=item.session_id)]
    assert actions == ["created", "cancel"]


def test_retry_failed_item(app, make_template, make_call, monkeypatch):
    tpl = make_template()
    call = make_call(transcript="short")
    item = enqueue_grading_job(call.id)
    process_queue_batch(10)
    old_session = db.session.get(QueueItem, item.id).session_id

    with pytest.raises(StateConflictError):
        retry_failed_item(enqueue_grading_job(make_call().id).id)

    call.transcript_text = "Rep: " + "we talked about budget and timing. " * 3
    db.session.commit()
    again = retry_failed_item(item.id)
    assert (again.status, again.attempts) == ("queued", 0)
    assert again.session_id != old_session
    assert db.session.get(Call, call.id).status == "pending"


def test_rq_entrypoint_reuses_app_context(app, make_template, make_call, monkeypatch):
    tpl = make_template()
    enqueue_grading_job(make_call().id)
    monkeypatch.setattr("callgrade.jobs.grade.score_transcript", lambda *a, **kw: _good_reply(tpl))
    assert process_queue(5) == 1


def test_queue_stats(app, make_template, make_call):
    make_template()
    enqueue_grading_job(make_call(transcript=None).id)
    enqueue_grading_job(make_call(transcript="short").id)
    process_queue_batch(10)
    assert queue_stats(org_id=1) == {"queued": 1, "processing": 0, "completed": 0, "failed": 1}
    assert queue_stats(org_id=2)["queued"] == 0


def _file_backed_app(tmp_path):
    cfg = type("FileDbConfig", (TestConfig,), {"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'queue.db'}"})
    app = create_app(cfg)
    with app.app_context():
        db.create_all()
        db.session.add(Organization(id=1, name="Acme"))
        db.session.commit()
        activate_template(create_template(1, "Discovery call", criteria=SCENARIO_CRITERIA).id)
    return app


def _enqueue_calls(app, n):
    with app.app_context():
        ids = []
        for _ in range(n):
            call = Call(org_id=1, title="Intro call", transcript_text=TRANSCRIPT)
            db.session.add(call)
            db.session.commit()
            ids.append(enqueue_grading_job(call.id).id)
        return ids


def _race(app, fn, workers=2):
    start = threading.Barrier(workers)
    results = []

    def run():
        with app.app_context():
            start.wait()
            results.append(fn())

    threads = [threading.Thread(target=run) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


def test_concurrent_claims_have_one_winner(tmp_path):
    app = _file_backed_app(tmp_path)
    (item_id,) = _enqueue_calls(app, 1)

    results = _race(app, lambda: claim_item(item_id))
    assert sorted(results) == [False, True]
    with app.app_context():
        assert db.session.get(QueueItem, item_id).status == "processing"
        db.drop_all()


def test_concurrent_pollers_never_share_an_item(tmp_path):
    app = _file_backed_app(tmp_path)
    ids = _enqueue_calls(app, 4)

    results = _race(app, lambda: [i.id for i in claim_next_batch(10)], workers=3)
    assert len(results) == 3
    claimed = [item_id for batch in results for item_id in batch]
    assert sorted(claimed) == sorted(ids)
    with app.app_context():
        assert {i.status for i in QueueItem.query.all()} == {"processing"}
        db.drop_all()
