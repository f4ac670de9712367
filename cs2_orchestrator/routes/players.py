from flask import Blueprint, jsonify, current_app, request

from . import json_body
from ..auth import require_admin_for_writes, require_admin
from ..errors import ValidationError
from ..steam import SteamClient

bp = Blueprint('players', __name__, url_prefix='/api/players')
bp.before_request(require_admin_for_writes)


def _steam_client() -> SteamClient:
    """A client bound to the currently stored API key."""
    return SteamClient(current_app.settings_service.get_steam_api_key(),
                       base_url=current_app.config['STEAM_API_URL'],
                       timeout=current_app.config['STEAM_API_TIMEOUT'])


@bp.route('', methods=['GET'])
def list_players():
    players = current_app.players.list_players(search=request.args.get('search'))
    return jsonify({'success': True, 'players': [p.to_dict() for p in players], 'count': len(players)})


@bp.route('', methods=['POST'])
def create_player():
    player = current_app.players.create_player(json_body())
    return jsonify({'success': True, 'player': player.to_dict()}), 201


@bp.route('/import', methods=['POST'])
def import_players():
    result = current_app.players.import_players(json_body().get('players'))
    return jsonify({
        'success': True,
        'created': [p.to_dict() for p in result['created']],
        'skipped': result['skipped'],
    })


@bp.route('/steam-lookup', methods=['GET'])
def steam_lookup():
    """Resolve a Steam64 id, profile URL or vanity name via the Steam Web API."""
    denied = require_admin()
    if denied is not None:
        return denied
    query = request.args.get('q')
    if not query:
        raise ValidationError('Query parameter q is required')
    return jsonify({'success': True, 'player': _steam_client().lookup(query)})


@bp.route('/<player_id>', methods=['GET'])
def get_player(player_id: str):
    return jsonify({'success': True, 'player': current_app.players.get_player(player_id).to_dict()})


@bp.route('/<player_id>', methods=['PUT'])
def update_player(player_id: str):
    player = current_app.players.update_player(player_id, json_body())
    return jsonify({'success': True, 'player': player.to_dict()})


@bp.route('/<player_id>', methods=['DELETE'])
def delete_player(player_id: str):
    current_app.players.delete_player(player_id)
    return jsonify({'success': True, 'message': f"Player '{player_id}' deleted"})


@bp.route('/<player_id>/rating-history', methods=['GET'])
def rating_history(player_id: str):
    history = current_app.players.rating_history(player_id)
    return jsonify({'success': True, 'history': [h.to_dict() for h in history]})
