import pytest

from callgrade.errors import StateConflictError, TemplateUnavailableError, ValidationError
from callgrade.extensions import db
from callgrade.models import Template
from callgrade.services.templates import (
    activate_template,
    archive_template,
    build_snapshot,
    create_template,
    resolve_template_for_call,
    set_default_template,
)

from conftest import SCENARIO_CRITERIA


def test_create_validates_criteria(app):
    with pytest.raises(ValidationError):
        create_template(1, "Bad", criteria=[{"name": "x", "criteria_type": "slider", "weight": 100}])
    with pytest.raises(ValidationError):
        create_template(1, "Bad", criteria=[{"name": "x", "criteria_type": "checklist", "config": {"scoring": "mode"}, "weight": 100}])
    with pytest.raises(ValidationError):
        create_template(1, "Bad", scoring_method="vibes")
    with pytest.raises(ValidationError):
        create_template(1, "Bad", criteria=[{"name": "x", "criteria_type": "percentage", "weight": 100, "max_score": "10"}])
    with pytest.raises(ValidationError):
        create_template(1, "Bad", pass_threshold="70")
    with pytest.raises(ValidationError):
        create_template(1, "Bad", groups=[{"name": "g"}], criteria=[
            {"name": "x", "criteria_type": "percentage", "weight": 100, "group_index": "0"},
        ])
    assert Template.query.count() == 0


def test_unknown_group_index_writes_nothing(app):
    with pytest.raises(ValidationError):
        create_template(1, "Orphan", groups=[{"name": "Opening"}], criteria=[
            {"name": "a", "criteria_type": "percentage", "weight": 100, "group_index": 3},
        ])
    assert Template.query.filter_by(name="Orphan").count() == 0


def test_activation_requires_weights_to_sum_to_100(app):
    tpl = create_template(1, "Lopsided", criteria=[
        {"name": "a", "criteria_type": "percentage", "weight": 60},
        {"name": "b", "criteria_type": "percentage", "weight": 30},
    ])
    with pytest.raises(ValidationError):
        activate_template(tpl.id)
    assert db.session.get(Template, tpl.id).status == "draft"


def test_activation_requires_a_criterion(app):
    tpl = create_template(1, "Empty")
    with pytest.raises(ValidationError):
        activate_template(tpl.id)


def test_reactivation_bumps_version(app):
    tpl = create_template(1, "Rubric", criteria=SCENARIO_CRITERIA)
    assert activate_template(tpl.id).version == 1
    assert activate_template(tpl.id).version == 2


def test_single_default_per_org(app, make_template):
    first = make_template(name="First")
    second = make_template(name="Second")
    other_org = make_template(name="Elsewhere", org_id=2)
    defaults = Template.query.filter_by(org_id=1, is_default=True).all()
    assert [t.id for t in defaults] == [second.id]
    assert db.session.get(Template, first.id).is_default is False
    assert db.session.get(Template, other_org.id).is_default is True


def test_default_must_be_active(app):
    tpl = create_template(1, "Draft", criteria=SCENARIO_CRITERIA)
    with pytest.raises(StateConflictError):
        set_default_template(tpl.id)


def test_resolution_order(app, make_template, make_call):
    older = make_template(name="Older", default=False)
    newer = make_template(name="Newer", default=False)
    call = make_call()
    assert resolve_template_for_call(call).id == newer.id

    set_default_template(older.id)
    assert resolve_template_for_call(call).id == older.id

    bound = make_call(template_id=newer.id)
    assert resolve_template_for_call(bound).id == newer.id

    archive_template(newer.id)
    with pytest.raises(TemplateUnavailableError):
        resolve_template_for_call(bound)


def test_no_active_template(app, make_call):
    with pytest.raises(TemplateUnavailableError):
        resolve_template_for_call(make_call())


def test_snapshot_groups_and_order(app):
    tpl = create_template(
        1, "Grouped",
        groups=[{"name": "Close", "weight": 40, "sort_order": 1}, {"name": "Open", "weight": 60, "sort_order": 0}],
        criteria=[
            {"name": "Ask for the deal", "criteria_type": "pass_fail", "weight": 40, "group_index": 0, "sort_order": 1},
            {"name": "Agenda", "criteria_type": "scale", "weight": 60, "group_index": 1, "sort_order": 0,
             "keywords": ["agenda"], "is_auto_fail": True, "auto_fail_threshold": 20},
        ],
    )
    snap = build_snapshot(tpl)
    assert [g.name for g in snap.groups] == ["Open", "Close"]
    assert [c.name for c in snap.criteria] == ["Agenda", "Ask for the deal"]
    assert snap.criteria[0].group_id == snap.groups[0].id
    assert snap.criteria[0].keywords == ["agenda"]
    assert snap.criteria[0].is_auto_fail and snap.criteria[0].auto_fail_threshold == 20
