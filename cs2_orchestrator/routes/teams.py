from flask import Blueprint, jsonify, current_app

from . import json_body
from ..auth import require_admin_for_writes

bp = Blueprint('teams', __name__, url_prefix='/api/teams')
bp.before_request(require_admin_for_writes)


@bp.route('', methods=['GET'])
def list_teams():
    teams = current_app.teams.list_teams()
    return jsonify({'success': True, 'teams': [t.to_dict() for t in teams], 'count': len(teams)})


@bp.route('', methods=['POST'])
def create_team():
    team = current_app.teams.create_team(json_body())
    return jsonify({'success': True, 'team': team.to_dict()}), 201


@bp.route('/<team_id>', methods=['GET'])
def get_team(team_id: str):
    return jsonify({'success': True, 'team': current_app.teams.get_team(team_id).to_dict()})


@bp.route('/<team_id>', methods=['PUT'])
def update_team(team_id: str):
    team = current_app.teams.update_team(team_id, json_body())
    return jsonify({'success': True, 'team': team.to_dict()})


@bp.route('/<team_id>', methods=['DELETE'])
def delete_team(team_id: str):
    current_app.teams.delete_team(team_id)
    return jsonify({'success': True, 'message': f"Team '{team_id}' deleted"})
