from flask import Blueprint, jsonify

from ..models import Template
from ..services import get_or_raise
from ..services.templates import (
    activate_template,
    archive_template,
    build_snapshot,
    create_template,
    set_default_template,
)
from . import int_field, json_body

bp = Blueprint("templates", __name__)


@bp.route("", methods=["POST"])
def create():
    body = json_body()
    tpl = create_template(
        org_id=int_field(body, "org_id", required=True),
        name=body.get("name"),
        scoring_method=body.get("scoring_method", "weighted"),
        pass_threshold=body.get("pass_threshold", 70),
        criteria=body.get("criteria"),
        groups=body.get("groups"),
        description=body.get("description"),
        settings=body.get("settings"),
    )
    return jsonify(tpl.to_dict()), 201


@bp.route("/<int:template_id>", methods=["GET"])
def show(template_id):
    tpl = get_or_raise(Template, template_id, "Template")
    out = tpl.to_dict()
    out["snapshot"] = build_snapshot(tpl).model_dump(mode="json")
    return jsonify(out)


@bp.route("/<int:template_id>/activate", methods=["POST"])
def activate(template_id):
    return jsonify(activate_template(template_id).to_dict())


@bp.route("/<int:template_id>/default", methods=["POST"])
def make_default(template_id):
    return jsonify(set_default_template(template_id).to_dict())


@bp.route("/<int:template_id>/archive", methods=["POST"])
def archive(template_id):
    return jsonify(archive_template(template_id).to_dict())
