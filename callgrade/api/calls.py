from flask import Blueprint, jsonify

from ..extensions import db, rq
from ..jobs.grade import process_queue
from ..models import Call, GradingSession, QueueItem
from ..services import get_or_raise
from ..services.queue import enqueue_grading_job
from . import int_field, json_body

bp = Blueprint("calls", __name__)


@bp.route("/<int:call_id>/grade", methods=["POST"])
def grade(call_id):
    body = json_body()
    item = enqueue_grading_job(
        call_id,
        priority=int_field(body, "priority", 0),
        max_attempts=int_field(body, "max_attempts"),
    )
    item_id = item.id
    # hand the batch to a worker; without Redis this runs inline
    rq.enqueue(process_queue, job_timeout=600)
    item = db.session.get(QueueItem, item_id)
    return jsonify(item.to_dict()), 202


@bp.route("/<int:call_id>", methods=["GET"])
def show(call_id):
    call = get_or_raise(Call, call_id, "Call")
    out = call.to_dict()
    session = (
        GradingSession.query.filter_by(call_id=call.id)
        .order_by(GradingSession.id.desc())
        .first()
    )
    item = QueueItem.query.filter_by(call_id=call.id).order_by(QueueItem.id.desc()).first()
    out["session"] = session.to_dict() if session else None
    out["queue_item"] = item.to_dict() if item else None
    return jsonify(out)
