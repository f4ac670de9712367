from flask import Blueprint, jsonify, current_app, request
from flask_login import login_required

from .. import __version__
from ..errors import ValidationError

bp = Blueprint('settings', __name__, url_prefix='/api/settings')


@bp.route('/version', methods=['GET'])
def version():
    """Public build version."""
    return jsonify({'success': True, 'version': __version__})


@bp.route('', methods=['GET'])
@login_required
def get_settings():
    return jsonify({'success': True, 'settings': current_app.settings_service.to_dict()})


@bp.route('', methods=['PUT'])
@login_required
def update_settings():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError('Request body must be a JSON object')
    settings = current_app.settings_service.update(body)
    return jsonify({'success': True, 'settings': settings})
