from flask import Blueprint, jsonify, current_app, request

from . import json_body
from ..auth import require_admin_for_writes

bp = Blueprint('tournament', __name__, url_prefix='/api/tournament')
bp.before_request(require_admin_for_writes)


def _registry():
    return current_app.registry


def _matches(matches):
    return [m.to_dict() for m in matches]


# ==================== Tournament CRUD ====================

@bp.route('', methods=['GET'])
def get_tournament():
    tournament = _registry().get_tournament()
    if tournament is None:
        return jsonify({'success': True, 'tournament': None})
    return jsonify({'success': True, 'tournament': _registry().describe(tournament)})


@bp.route('', methods=['POST'])
def create_tournament():
    registry = _registry()
    tournament = registry.create_tournament(json_body())
    return jsonify({
        'success': True,
        'message': 'Tournament created successfully',
        'tournament': registry.describe(tournament),
    }), 201


@bp.route('', methods=['PUT'])
def update_tournament():
    registry = _registry()
    tournament = registry.update_tournament(json_body())
    return jsonify({'success': True, 'tournament': registry.describe(tournament)})


@bp.route('', methods=['DELETE'])
def delete_tournament():
    _registry().delete_tournament()
    return jsonify({'success': True, 'message': 'Tournament deleted'})


@bp.route('/shuffle', methods=['POST'])
def create_shuffle_tournament():
    """Create a shuffle tournament and optionally register its players."""
    registry = _registry()
    data = json_body()
    data['type'] = 'shuffle'
    player_ids = data.pop('playerIds', None)
    tournament = registry.create_tournament(data)
    if player_ids is not None:
        tournament = registry.register_players(player_ids)
    return jsonify({
        'success': True,
        'message': 'Shuffle tournament created successfully',
        'tournament': registry.describe(tournament),
    }), 201


@bp.route('/players', methods=['GET'])
def get_players():
    tournament = _registry().require_tournament()
    players = [r.player.to_dict() for r in tournament.registrations if r.player is not None]
    return jsonify({'success': True, 'players': players, 'count': len(players)})


@bp.route('/players', methods=['PUT'])
def set_players():
    registry = _registry()
    tournament = registry.register_players(json_body().get('playerIds'))
    return jsonify({
        'success': True,
        'playerIds': [r.player_id for r in tournament.registrations],
        'count': len(tournament.registrations),
    })


# ==================== Round progression ====================

@bp.route('/start', methods=['POST'])
def start_tournament():
    registry = _registry()
    created = registry.start()
    return jsonify({
        'success': True,
        'message': 'Tournament started',
        'tournament': registry.describe(registry.require_tournament()),
        'matches': _matches(created),
    })


@bp.route('/advance', methods=['POST'])
def advance_round():
    registry = _registry()
    result = registry.advance()
    return jsonify({
        'success': True,
        'round': result['round'],
        'matches': _matches(result['matches']),
    })


@bp.route('/end', methods=['POST'])
def end_tournament():
    registry = _registry()
    tournament = registry.end()
    return jsonify({'success': True, 'tournament': registry.describe(tournament)})


@bp.route('/reset', methods=['POST'])
def reset_tournament():
    """Back to setup: running matches are stopped and all rounds discarded."""
    registry = _registry()
    result = registry.reset()
    message = 'Tournament reset to setup mode.'
    if result['matchesEnded']:
        message += f" {result['matchesEnded']} match(es) ended on servers."
    if result['matchesEndedFailed']:
        message += f" {result['matchesEndedFailed']} match(es) failed to end."
    return jsonify({
        'success': True,
        'message': message,
        'tournament': registry.describe(result['tournament']),
        'matchesEnded': result['matchesEnded'],
        'matchesEndedFailed': result['matchesEndedFailed'],
    })


@bp.route('/restart', methods=['POST'])
def restart_tournament():
    result = _registry().restart()
    return jsonify({'success': True, **result})


@bp.route('/server-availability', methods=['GET'])
def server_availability():
    return jsonify({'success': True, 'availableServerCount': _registry().server_availability()})


# ==================== Views ====================

@bp.route('/status', methods=['GET'])
def tournament_status():
    registry = _registry()
    tournament = registry.require_tournament()
    data = registry.describe(tournament)
    return jsonify({
        'success': True,
        'status': data['status'],
        'currentRound': data['currentRound'],
        'totalRounds': data['totalRounds'],
        'allowedActions': data['allowedActions'],
        'formAccess': data['formAccess'],
    })


@bp.route('/round-status', methods=['GET'])
def round_status():
    registry = _registry()
    tournament = registry.require_tournament()
    round_num = request.args.get('round', type=int)
    status = registry.round_status(tournament, round_num)
    return jsonify({
        'success': True,
        'roundStatus': status,
        'currentRound': tournament.current_round,
        'totalRounds': status['totalRounds'],
    })


@bp.route('/bracket', methods=['GET'])
def bracket():
    registry = _registry()
    tournament = registry.require_tournament()
    return jsonify({'success': True, 'bracket': registry.bracket(tournament)})


@bp.route('/leaderboard', methods=['GET'])
def leaderboard():
    registry = _registry()
    tournament = registry.require_tournament()
    return jsonify({'success': True, 'leaderboard': registry.leaderboard(tournament)})


# ==================== ELO template ====================

@bp.route('/elo-template', methods=['GET'])
def get_elo_template():
    registry = _registry()
    tournament = registry.require_tournament()
    template = registry.get_elo_template(tournament)
    return jsonify({
        'success': True,
        'eloTemplateId': tournament.elo_template_id,
        'template': template.to_dict() if template else None,
    })


@bp.route('/elo-template', methods=['PUT'])
def set_elo_template():
    registry = _registry()
    tournament = registry.set_elo_template(json_body().get('eloTemplateId'))
    template = registry.get_elo_template(tournament)
    return jsonify({
        'success': True,
        'eloTemplateId': tournament.elo_template_id,
        'template': template.to_dict() if template else None,
    })


@bp.route('/events', methods=['GET'])
def recent_events():
    """Latest published events for the current tournament, newest first."""
    tournament = _registry().require_tournament()
    count = min(max(request.args.get('count', 50, type=int), 1), 200)
    events = current_app.publisher.recent(str(tournament.id), count)
    return jsonify({'success': True, 'events': [e.to_dict() for e in events], 'count': len(events)})
