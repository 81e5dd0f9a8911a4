from flask import Blueprint, jsonify

from ..errors import ValidationError
from ..models import GradingSession
from ..services import get_or_raise
from ..services.sessions import (
    annotate_dispute,
    compute_session_composite,
    create_session,
    session_audit_trail,
    submit_scores,
    transition_session,
)
from . import actor_from, int_field, json_body

bp = Blueprint("sessions", __name__)


@bp.route("", methods=["POST"])
def create():
    body = json_body()
    actor = actor_from(body)
    session = create_session(
        int_field(body, "template_id", required=True),
        int_field(body, "org_id", required=True),
        call_id=int_field(body, "call_id"),
        agent_id=int_field(body, "agent_id"),
        coach_id=int_field(body, "coach_id"),
        source="manual",
        actor=actor,
    )
    return jsonify(session.to_dict()), 201


@bp.route("/<int:session_id>", methods=["GET"])
def show(session_id):
    session = get_or_raise(GradingSession, session_id, "Session")
    out = session.to_dict()
    out["scores"] = [s.to_dict() for s in session.scores]
    return jsonify(out)


@bp.route("/<int:session_id>/scores", methods=["POST"])
def scores(session_id):
    body = json_body()
    entries = body.get("scores")
    if not isinstance(entries, list):
        raise ValidationError("scores must be a list")
    session = submit_scores(session_id, entries, actor_from(body))
    return jsonify(session.to_dict())


@bp.route("/<int:session_id>/scores/<int:criterion_id>/dispute-note", methods=["POST"])
def dispute_note(session_id, criterion_id):
    body = json_body()
    row = annotate_dispute(session_id, criterion_id, body.get("note"), actor_from(body))
    return jsonify(row.to_dict())


@bp.route("/<int:session_id>/composite", methods=["GET"])
def composite(session_id):
    return jsonify(compute_session_composite(session_id))


@bp.route("/<int:session_id>/audit", methods=["GET"])
def audit(session_id):
    return jsonify(session_audit_trail(session_id))


@bp.route("/<int:session_id>/<action>", methods=["POST"])
def transition(session_id, action):
    body = json_body()
    session = transition_session(session_id, action, actor_from(body), reason=body.get("reason"))
    return jsonify(session.to_dict())
