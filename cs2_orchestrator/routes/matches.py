from flask import Blueprint, jsonify, current_app, request

from . import json_body
from ..auth import require_admin_for_writes
from ..errors import ValidationError

bp = Blueprint('matches', __name__, url_prefix='/api/matches')
bp.before_request(require_admin_for_writes)


@bp.route('', methods=['GET'])
def list_matches():
    """List the current tournament's matches, optionally by round and status."""
    tournament = current_app.registry.get_tournament()
    if tournament is None:
        return jsonify({'success': True, 'matches': [], 'count': 0})
    matches = current_app.engine.list_matches(
        tournament,
        round_num=request.args.get('round', type=int),
        status=request.args.get('status'),
    )
    return jsonify({'success': True, 'matches': [m.to_dict() for m in matches], 'count': len(matches)})


@bp.route('/<slug>', methods=['GET'])
def get_match(slug: str):
    match = current_app.engine.get_match(slug)
    data = match.to_dict()
    data['playerStats'] = [s.to_dict() for s in match.player_stats]
    return jsonify({'success': True, 'match': data})


@bp.route('/<slug>/veto', methods=['POST'])
def veto(slug: str):
    engine = current_app.engine
    data = json_body()
    match = engine.apply_veto(
        engine.get_match(slug),
        team=data.get('team'),
        action=data.get('action'),
        map_name=data.get('map'),
        side=data.get('side'),
    )
    return jsonify({'success': True, 'match': match.to_dict()})


@bp.route('/<slug>/load', methods=['POST'])
def load_match(slug: str):
    engine = current_app.engine
    server_id = json_body().get('serverId')
    if server_id is not None and not isinstance(server_id, str):
        raise ValidationError('serverId must be a string')
    match = engine.load_match(engine.get_match(slug), server_id)
    return jsonify({'success': True, 'match': match.to_dict()})


@bp.route('/<slug>/restart', methods=['POST'])
def restart_match(slug: str):
    engine = current_app.engine
    match = engine.restart_match(engine.get_match(slug))
    return jsonify({'success': True, 'match': match.to_dict()})


@bp.route('/<slug>/server', methods=['POST'])
def reassign_server(slug: str):
    """Move a loaded or live match to another server."""
    engine = current_app.engine
    server_id = json_body().get('serverId')
    if not isinstance(server_id, str) or not server_id:
        raise ValidationError('serverId is required')
    match = engine.reassign_server(engine.get_match(slug), server_id)
    return jsonify({'success': True, 'match': match.to_dict()})


@bp.route('/<slug>/force-end', methods=['POST'])
def force_end(slug: str):
    engine = current_app.engine
    match = engine.force_end(engine.get_match(slug), json_body().get('winnerId'))
    return jsonify({'success': True, 'match': match.to_dict()})


@bp.route('/<slug>/winner', methods=['POST'])
def set_winner(slug: str):
    """Admin override of a completed match's winner."""
    engine = current_app.engine
    winner_id = json_body().get('winnerId')
    if not isinstance(winner_id, str) or not winner_id:
        raise ValidationError('winnerId is required')
    match = engine.set_winner(engine.get_match(slug), winner_id)
    return jsonify({'success': True, 'match': match.to_dict()})
