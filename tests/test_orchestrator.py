import pytest

from callgrade.errors import TranscriptTooShortError, TranscriptUnavailableError, TransientProviderError
from callgrade.extensions import db
from callgrade.jobs.grade import evaluate, grade_call
from callgrade.models import Call, GradingSession, Report, Score, Setting
from callgrade.services.queue import enqueue_grading_job
from callgrade.services.sessions import snapshot_of, transition_session

from conftest import scorer_reply


def _ids(tpl):
    return [c.id for c in tpl.criteria]


def _patch_scorer(monkeypatch, reply, seen=None):
    def fake(system_prompt, user_content, model=None, temperature=None):
        if seen is not None:
            seen.update(system_prompt=system_prompt, model=model, temperature=temperature)
        return reply
    monkeypatch.setattr("callgrade.jobs.grade.score_transcript", fake)


def test_evaluate_drops_unknown_and_lists_missing(app, make_template, monkeypatch):
    tpl = make_template()
    scale_id, pf_id = _ids(tpl)
    _patch_scorer(monkeypatch, scorer_reply([
        {"criteriaId": scale_id, "value": {"value": 8}},
        {"criteriaId": 9999, "value": {"value": 1}},
    ]))
    result = evaluate("transcript", snapshot_of_template(tpl))
    assert [s.criterion_id for s in result.scores] == [scale_id]
    assert result.dropped_criteria_ids == ["9999"]
    assert result.missing_criteria_ids == [pf_id]


def test_evaluate_applies_org_overrides(app, make_template, monkeypatch):
    tpl = make_template()
    db.session.add_all([
        Setting(org_id=1, key="ai.model", value="gpt-4o-mini"),
        Setting(org_id=1, key="ai.temperature", value="0.1"),
        Setting(org_id=1, key="ai.custom_prompt_prefix", value="Focus on compliance."),
    ])
    db.session.commit()
    seen = {}
    _patch_scorer(monkeypatch, scorer_reply([]), seen)
    evaluate("transcript", snapshot_of_template(tpl), org_id=1)
    assert seen["model"] == "gpt-4o-mini"
    assert seen["temperature"] == 0.1
    assert seen["system_prompt"].startswith("Focus on compliance.")


def snapshot_of_template(tpl):
    from callgrade.services.templates import build_snapshot
    return build_snapshot(tpl)


def test_grade_call_completes_scenario(app, make_template, make_call, monkeypatch):
    tpl = make_template()
    scale_id, pf_id = _ids(tpl)
    call = make_call()
    item = enqueue_grading_job(call.id)
    _patch_scorer(monkeypatch, scorer_reply([
        {"criteriaId": scale_id, "value": {"value": 8}, "feedback": "good questions"},
        {"criteriaId": str(pf_id), "value": {"passed": True}},
    ], competitorMentions=["Globex"]))

    assert grade_call(call.id, item.session_id) == "completed"

    session = db.session.get(GradingSession, item.session_id)
    assert session.status == "completed"
    assert session.percentage_score == 88
    assert session.pass_status == "pass"
    assert db.session.get(Call, call.id).status == "analyzed"
    assert Score.query.filter_by(session_id=session.id).count() == 2

    report = Report.query.filter_by(session_id=session.id).one()
    assert report.percentage_score == 88
    assert report.competitor_mentions == ["Globex"]
    assert report.token_usage["total"] == 1200


def test_missing_required_criterion_leaves_session_in_progress(app, make_template, make_call, monkeypatch):
    tpl = make_template()
    scale_id, pf_id = _ids(tpl)
    call = make_call()
    item = enqueue_grading_job(call.id)
    _patch_scorer(monkeypatch, scorer_reply([{"criteriaId": scale_id, "value": {"value": 8}}]))

    assert grade_call(call.id, item.session_id) == "in_progress"
    session = db.session.get(GradingSession, item.session_id)
    assert session.status == "in_progress"
    assert Score.query.filter_by(session_id=session.id, criterion_id=pf_id).first() is None
    assert Report.query.filter_by(session_id=session.id).one().missing_criteria_ids == [pf_id]


def test_malformed_value_is_flagged_not_fatal(app, make_template, make_call, monkeypatch):
    tpl = make_template()
    scale_id, pf_id = _ids(tpl)
    call = make_call()
    item = enqueue_grading_job(call.id)
    _patch_scorer(monkeypatch, scorer_reply([
        {"criteriaId": scale_id, "value": {"value": "eight"}},
        {"criteriaId": pf_id, "value": {"passed": True}},
    ]))

    assert grade_call(call.id, item.session_id) == "completed"
    bad = Score.query.filter_by(session_id=item.session_id, criterion_id=scale_id).one()
    assert bad.is_invalid and bad.raw_score == 0
    assert db.session.get(GradingSession, item.session_id).percentage_score == 40


def test_bad_entry_beside_good_ones_only_costs_itself(app, make_template, make_call, monkeypatch):
    tpl = make_template()
    scale_id, pf_id = _ids(tpl)
    call = make_call()
    item = enqueue_grading_job(call.id)
    _patch_scorer(monkeypatch, scorer_reply([
        {"value": {"value": 9}, "feedback": "id went missing"},
        {"criteriaId": scale_id, "value": {"value": float("nan")}, "autoFailTriggered": None},
        {"criteriaId": pf_id, "value": {"passed": True}, "feedback": 42},
    ]))

    assert grade_call(call.id, item.session_id) == "completed"
    nan_row = Score.query.filter_by(session_id=item.session_id, criterion_id=scale_id).one()
    assert nan_row.is_invalid and nan_row.raw_score == 0
    pf_row = Score.query.filter_by(session_id=item.session_id, criterion_id=pf_id).one()
    assert pf_row.comment == "42" and not pf_row.is_invalid
    assert db.session.get(GradingSession, item.session_id).percentage_score == 40


def test_provider_failure_writes_nothing(app, make_template, make_call, monkeypatch):
    make_template()
    call = make_call()
    item = enqueue_grading_job(call.id)

    def fail(*a, **kw):
        raise TransientProviderError("timeout")

    monkeypatch.setattr("callgrade.jobs.grade.score_transcript", fail)
    with pytest.raises(TransientProviderError):
        grade_call(call.id, item.session_id)
    assert Score.query.count() == 0
    assert Report.query.count() == 0
    assert db.session.get(GradingSession, item.session_id).status == "pending"


def test_result_for_cancelled_session_is_discarded(app, make_template, make_call, monkeypatch):
    tpl = make_template()
    scale_id, pf_id = _ids(tpl)
    call = make_call()
    item = enqueue_grading_job(call.id)
    transition_session(item.session_id, "cancel", "coach:7", reason="wrong rubric")
    _patch_scorer(monkeypatch, scorer_reply([
        {"criteriaId": scale_id, "value": {"value": 8}},
        {"criteriaId": pf_id, "value": {"passed": True}},
    ]))

    assert grade_call(call.id, item.session_id) == "discarded"
    assert Score.query.count() == 0
    assert Report.query.count() == 0
    assert db.session.get(GradingSession, item.session_id).status == "cancelled"
    discarded = db.session.get(Call, call.id)
    assert discarded.status == "analyzed"
    assert discarded.last_error == f"Result discarded: session {item.session_id} was cancelled"


def test_cancel_while_scorer_runs_discards_result(app, make_template, make_call, monkeypatch):
    tpl = make_template()
    scale_id, pf_id = _ids(tpl)
    call = make_call()
    item = enqueue_grading_job(call.id)
    reply = scorer_reply([{"criteriaId": scale_id, "value": {"value": 8}}, {"criteriaId": pf_id, "value": {"passed": True}}])

    def slow_scorer(*a, **kw):
        # a coach cancels while the scorer is still working
        transition_session(item.session_id, "cancel", "coach:7", reason="duplicate")
        return reply

    monkeypatch.setattr("callgrade.jobs.grade.score_transcript", slow_scorer)
    assert grade_call(call.id, item.session_id) == "discarded"
    assert Score.query.count() == 0


def test_transcript_preconditions(app, make_template, make_call):
    make_template()
    empty = make_call(transcript=None)
    short = make_call(transcript="Hi there.")
    empty_item = enqueue_grading_job(empty.id)
    short_item = enqueue_grading_job(short.id)

    with pytest.raises(TranscriptUnavailableError) as exc:
        grade_call(empty.id, empty_item.session_id)
    assert exc.value.retryable
    with pytest.raises(TranscriptTooShortError) as exc:
        grade_call(short.id, short_item.session_id)
    assert not exc.value.retryable


def test_snapshot_is_frozen_against_template_edits(app, make_template, make_call):
    tpl = make_template()
    call = make_call()
    item = enqueue_grading_job(call.id)
    tpl.criteria[0].weight = 5
    db.session.commit()
    snap = snapshot_of(db.session.get(GradingSession, item.session_id))
    assert snap.criteria[0].weight == 60
