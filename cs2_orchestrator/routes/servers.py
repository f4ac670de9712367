from flask import Blueprint, jsonify, current_app

from . import json_body
from ..auth import require_admin
from ..models import db, Match

bp = Blueprint('servers', __name__, url_prefix='/api/servers')
bp.before_request(require_admin)


@bp.route('', methods=['GET'])
def list_servers():
    servers = current_app.servers.list_servers()
    return jsonify({'success': True, 'servers': [s.to_dict() for s in servers], 'count': len(servers)})


@bp.route('', methods=['POST'])
def create_server():
    server = current_app.servers.create_server(json_body())
    return jsonify({'success': True, 'server': server.to_dict()}), 201


@bp.route('/<server_id>', methods=['GET'])
def get_server(server_id: str):
    return jsonify({'success': True, 'server': current_app.servers.get_server(server_id).to_dict()})


@bp.route('/<server_id>', methods=['PUT'])
def update_server(server_id: str):
    server = current_app.servers.update_server(server_id, json_body())
    return jsonify({'success': True, 'server': server.to_dict()})


@bp.route('/<server_id>', methods=['DELETE'])
def delete_server(server_id: str):
    current_app.servers.delete_server(server_id)
    return jsonify({'success': True, 'message': f"Server '{server_id}' deleted"})


@bp.route('/<server_id>/status', methods=['GET'])
def server_status(server_id: str):
    """Reachability, independent of any match status."""
    registry = current_app.servers
    server = registry.get_server(server_id)
    match = db.session.get(Match, server.current_match_id) if server.current_match_id else None
    return jsonify({'success': True, **registry.status_report(server, match)})
