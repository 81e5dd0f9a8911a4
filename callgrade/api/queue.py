from flask import Blueprint, jsonify, request

from ..services.queue import process_queue_batch, queue_stats, retry_failed_item
from . import int_field, json_body

bp = Blueprint("queue", __name__)


@bp.route("/process", methods=["POST"])
def process():
    """Cron hook: run one batch and report how many items were handled."""
    body = json_body()
    processed = process_queue_batch(int_field(body, "max_items"))
    return jsonify({"processed": processed})


@bp.route("/stats", methods=["GET"])
def stats():
    org_id = request.args.get("org_id", type=int)
    return jsonify(queue_stats(org_id))


@bp.route("/<int:item_id>/retry", methods=["POST"])
def retry(item_id):
    item = retry_failed_item(item_id)
    return jsonify(item.to_dict())
