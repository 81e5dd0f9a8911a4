from flask import request

from ..errors import ValidationError


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def actor_from(body):
    actor = body.get("actor")
    if not actor:
        raise ValidationError("actor is required")
    return str(actor)


def int_field(body, key, default=None, required=False):
    """Integer from a JSON body; anything else is a 400."""
    value = body.get(key)
    if value is None:
        if required:
            raise ValidationError(f"{key} is required")
        return default
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    return value
