from flask import request

from ..errors import ValidationError


def json_body() -> dict:
    """The request's JSON object; anything else is a validation error."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data
