import logging
from typing import List

from .elo_calculator import round_half_up
from .errors import ValidationError, ConflictError, NotFoundError
from .models import db, Player, PlayerRatingHistory, ShuffleRegistration
from .steam import is_steam64

logger = logging.getLogger(__name__)


class PlayerService:
    """Player records keyed by Steam64 id, with ELO history."""

    def __init__(self, settings=None, default_elo: int = 3000):
        self.settings = settings
        self._default_elo = default_elo

    @property
    def default_elo(self) -> int:
        if self.settings is not None:
            return self.settings.get_default_player_elo()
        return self._default_elo

    def list_players(self, search: str = None) -> List[Player]:
        query = Player.query
        if search:
            query = query.filter(Player.name.ilike(f'%{search}%'))
        return query.order_by(Player.current_elo.desc(), Player.name).all()

    def get_player(self, player_id: str) -> Player:
        player = db.session.get(Player, player_id)
        if player is None:
            raise NotFoundError(f"Player '{player_id}' not found")
        return player

    def _build(self, data: dict) -> Player:
        steam_id = data.get('id') or data.get('steamId')
        if not is_steam64(steam_id):
            raise ValidationError('Player id must be a 17-digit Steam64 id')
        name = data.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('Player name is required')
        elo = data.get('initialElo', data.get('currentElo', self.default_elo))
        if isinstance(elo, bool) or not isinstance(elo, (int, float)) or elo <= 0:
            raise ValidationError('initialElo must be a positive number')
        elo = round_half_up(elo)
        avatar = data.get('avatar')
        if avatar is not None and not isinstance(avatar, str):
            raise ValidationError('avatar must be a string')
        return Player(id=steam_id, name=name.strip(), avatar=avatar, current_elo=elo, starting_elo=elo)

    def create_player(self, data: dict) -> Player:
        player = self._build(data)
        if db.session.get(Player, player.id) is not None:
            raise ConflictError(f"Player '{player.id}' already exists")
        db.session.add(player)
        db.session.commit()
        logger.info(f"Created player {player.id} ({player.name}) at {player.current_elo}")
        return player

    def import_players(self, rows) -> dict:
        """Bulk create; existing ids are skipped rather than rejected."""
        if not isinstance(rows, list):
            raise ValidationError('players must be a list')
        built = [self._build(row if isinstance(row, dict) else {}) for row in rows]
        created, skipped = [], []
        seen = set()
        for player in built:
            if player.id in seen or db.session.get(Player, player.id) is not None:
                skipped.append(player.id)
                continue
            seen.add(player.id)
            db.session.add(player)
            created.append(player)
        db.session.commit()
        logger.info(f"Imported {len(created)} players ({len(skipped)} skipped)")
        return {'created': created, 'skipped': skipped}

    def update_player(self, player_id: str, data: dict) -> Player:
        player = self.get_player(player_id)
        if 'name' in data:
            name = data['name']
            if not isinstance(name, str) or not name.strip():
                raise ValidationError('Player name is required')
            player.name = name.strip()
        if 'avatar' in data:
            if data['avatar'] is not None and not isinstance(data['avatar'], str):
                raise ValidationError('avatar must be a string')
            player.avatar = data['avatar']
        if 'currentElo' in data:
            elo = data['currentElo']
            if isinstance(elo, bool) or not isinstance(elo, (int, float)) or elo <= 0:
                raise ValidationError('currentElo must be a positive number')
            player.reset_rating(round_half_up(elo))
        db.session.commit()
        return player

    def delete_player(self, player_id: str):
        player = self.get_player(player_id)
        if ShuffleRegistration.query.filter_by(player_id=player_id).first() is not None:
            raise ConflictError(f"Player '{player_id}' is registered in a tournament")
        db.session.delete(player)
        db.session.commit()
        logger.info(f"Deleted player {player_id}")

    def rating_history(self, player_id: str) -> List[PlayerRatingHistory]:
        self.get_player(player_id)
        return (
            PlayerRatingHistory.query.filter_by(player_id=player_id)
            .order_by(PlayerRatingHistory.created_at.desc(), PlayerRatingHistory.id.desc())
            .all()
        )
