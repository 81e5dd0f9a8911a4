import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest

from callgrade import create_app
from callgrade.extensions import db
from callgrade.models import Call, Organization
from callgrade.services.llm_scorer import ScorerReply, ScorerResponse
from callgrade.services.templates import activate_template, create_template, set_default_template

TRANSCRIPT = (
    "Rep: Hi, thanks for taking the time today. What is your budget for this quarter?\n"
    "Prospect: Around twenty thousand, and we need it live before March.\n"
    "Rep: Great, let me walk you through how we handle onboarding."
)

SCENARIO_CRITERIA = [
    {"name": "Discovery", "criteria_type": "scale", "config": {"min": 0, "max": 10}, "weight": 60},
    {"name": "Asked for budget", "criteria_type": "pass_fail", "config": {"pass_value": 100, "fail_value": 0}, "weight": 40},
]


@pytest.fixture
def app():
    app = create_app("config.TestConfig")
    with app.app_context():
        db.create_all()
        db.session.add(Organization(id=1, name="Acme"))
        db.session.commit()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_template(app):
    def _make(criteria=None, org_id=1, default=True, **kwargs):
        tpl = create_template(org_id, kwargs.pop("name", "Discovery call"), criteria=criteria or SCENARIO_CRITERIA, **kwargs)
        activate_template(tpl.id)
        if default:
            set_default_template(tpl.id)
        return tpl
    return _make


@pytest.fixture
def make_call(app):
    def _make(transcript=TRANSCRIPT, org_id=1, **kwargs):
        call = Call(org_id=org_id, title="Intro call", transcript_text=transcript, **kwargs)
        db.session.add(call)
        db.session.commit()
        return call
    return _make


def scorer_reply(criteria_scores, **extra):
    data = {"criteriaScores": criteria_scores, "summary": "Solid discovery.", "strengths": ["Asked about budget"]}
    data.update(extra)
    return ScorerReply(
        data=ScorerResponse.model_validate(data),
        model="gpt-4o",
        token_usage={"prompt": 900, "completion": 300, "total": 1200},
    )
