import logging

from flask import Blueprint, jsonify, current_app, request

from ..auth import check_webhook_token
from ..errors import ValidationError

logger = logging.getLogger(__name__)

bp = Blueprint('events', __name__, url_prefix='/api/events')


@bp.route('', methods=['POST'])
def receive_event():
    """MatchZy webhook. Re-delivered events are acknowledged without effect."""
    check_webhook_token()
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError('Event body must be a JSON object')

    result = current_app.events.handle(payload)
    match = result['match']
    return jsonify({
        'success': True,
        'duplicate': result['duplicate'],
        'matchStatus': match.status,
    })
