from flask import Blueprint, jsonify, current_app

from . import json_body
from ..auth import require_admin

bp = Blueprint('elo_templates', __name__, url_prefix='/api/elo-templates')
bp.before_request(require_admin)


@bp.route('', methods=['GET'])
def list_templates():
    templates = current_app.templates.list_templates()
    return jsonify({'success': True, 'templates': [t.to_dict() for t in templates]})


@bp.route('', methods=['POST'])
def create_template():
    template = current_app.templates.create_template(json_body())
    return jsonify({'success': True, 'template': template.to_dict()}), 201


@bp.route('/<template_id>', methods=['GET'])
def get_template(template_id: str):
    return jsonify({'success': True, 'template': current_app.templates.require_template(template_id).to_dict()})


@bp.route('/<template_id>', methods=['PUT'])
def update_template(template_id: str):
    template = current_app.templates.update_template(template_id, json_body())
    return jsonify({'success': True, 'template': template.to_dict()})


@bp.route('/<template_id>', methods=['DELETE'])
def delete_template(template_id: str):
    current_app.templates.delete_template(template_id)
    return jsonify({'success': True, 'message': f"Template '{template_id}' deleted"})
