from ..errors import NotFoundError
from ..extensions import db


def get_or_raise(model, entity_id, label=None):
    row = db.session.get(model, entity_id)
    if row is None:
        raise NotFoundError(label or model.__name__, entity_id)
    return row
