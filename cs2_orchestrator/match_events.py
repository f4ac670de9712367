import json
import hashlib
import logging

from sqlalchemy.exc import IntegrityError

from .errors import ValidationError
from .match_engine import MatchEngine
from .models import db, Match, MatchEvent
from .rating_service import record_player_stats

logger = logging.getLogger(__name__)

SUPPORTED_EVENTS = [
    'player_connect',
    'player_disconnect',
    'going_live',
    'round_end',
    'map_result',
    'series_end',
    'player_stats',
]

# Events still applied after a match has completed
LATE_EVENTS = {'player_stats'}

# Idempotent per player; only deduplicated when the sender supplies an event id
PRESENCE_EVENTS = {'player_connect', 'player_disconnect'}


def _has_event_id(payload: dict) -> bool:
    return bool(payload.get('event_id') or payload.get('eventId'))


def event_key(payload: dict) -> str:
    """Delivery identity: the sender's event id, else a digest of the canonical payload."""
    if _has_event_id(payload):
        return str(payload.get('event_id') or payload.get('eventId'))[:128]
    canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'))
    return 'sha256:' + hashlib.sha256(canonical.encode()).hexdigest()


def _score(payload: dict, side: str) -> int:
    value = payload.get(side)
    if isinstance(value, dict):
        value = value.get('score')
    if value is None:
        value = payload.get(f'{side}_score')
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f'{side} score must be an integer')
    return value


def _steam_id(payload: dict) -> str:
    player = payload.get('player')
    steam_id = (player.get('steamid') or player.get('steamId')) if isinstance(player, dict) else None
    if not steam_id:
        raise ValidationError('player.steamid is required')
    return str(steam_id)


class MatchEventHandler:
    """
    Applies MatchZy webhook events to matches.
    Each (match, event key) is applied once; re-delivery is acknowledged as a no-op.
    """

    def __init__(self, engine: MatchEngine):
        self.engine = engine

    def handle(self, payload: dict) -> dict:
        if not isinstance(payload, dict):
            raise ValidationError('Event body must be a JSON object')
        event_type = payload.get('event')
        if event_type not in SUPPORTED_EVENTS:
            raise ValidationError(f'Unsupported event type: {event_type}')
        slug = payload.get('matchid') or payload.get('matchId')
        if not slug:
            raise ValidationError('matchid is required')

        match = self.engine.get_match(str(slug))

        if event_type in PRESENCE_EVENTS and not _has_event_id(payload):
            # Keyed by steam id in the match itself, so a reconnect is never mistaken for a retry
            if match.status != 'completed':
                getattr(self, f'_on_{event_type}')(match, payload)
                db.session.commit()
            return {'duplicate': False, 'match': match}

        key = event_key(payload)

        if MatchEvent.query.filter_by(match_id=match.id, event_key=key).first() is not None:
            logger.info(f"Duplicate {event_type} for match {match.slug} ignored")
            return {'duplicate': True, 'match': match}

        db.session.add(MatchEvent(match_id=match.id, event_key=key, event_type=event_type, payload=payload))
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            logger.info(f"Concurrent duplicate {event_type} for match {match.slug} ignored")
            return {'duplicate': True, 'match': self.engine.get_match(str(slug))}

        if match.status == 'completed' and event_type not in LATE_EVENTS:
            logger.info(f"Late {event_type} for completed match {match.slug} recorded without effect")
        else:
            getattr(self, f'_on_{event_type}')(match, payload)

        db.session.commit()
        return {'duplicate': False, 'match': match}

    def _on_player_connect(self, match: Match, payload: dict):
        self.engine.player_connected(match, _steam_id(payload), True)

    def _on_player_disconnect(self, match: Match, payload: dict):
        self.engine.player_connected(match, _steam_id(payload), False)

    def _on_going_live(self, match: Match, payload: dict):
        self.engine.warmup_ended(match)

    def _on_round_end(self, match: Match, payload: dict):
        self.engine.record_round_score(match, _score(payload, 'team1'), _score(payload, 'team2'))

    def _on_map_result(self, match: Match, payload: dict):
        map_number = payload.get('map_number', 0)
        if isinstance(map_number, bool) or not isinstance(map_number, int) or map_number < 0:
            raise ValidationError('map_number must be a non-negative integer')
        self.engine.record_map_result(
            match, map_number, _score(payload, 'team1'), _score(payload, 'team2'), payload.get('map_name')
        )

    def _on_series_end(self, match: Match, payload: dict):
        team1 = payload.get('team1_series_score')
        team2 = payload.get('team2_series_score')
        if isinstance(team1, int) and isinstance(team2, int):
            match.team1_series_score = team1
            match.team2_series_score = team2
        self.engine.complete_match(match)

    def _on_player_stats(self, match: Match, payload: dict):
        steam_id = _steam_id(payload)
        player = payload['player']
        stats = payload.get('stats')
        if not isinstance(stats, dict):
            raise ValidationError('stats must be an object')
        team_id = match.team1_id if player.get('team') == 'team1' else (
            match.team2_id if player.get('team') == 'team2' else None
        )
        record_player_stats(match, steam_id, team_id, stats)
        if match.ratings_applied:
            self.engine.ratings.apply_late_stats(match, steam_id)
