from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from cryptography.fernet import Fernet, InvalidToken
import os
import base64
import hashlib

from .elo_calculator import mu_for, sigma_for

db = SQLAlchemy()


def get_encryption_key():
    """Derive the Fernet key from SECRET_KEY."""
    secret = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-prod')
    key = hashlib.sha256(secret.encode()).digest()
    return base64.urlsafe_b64encode(key)


def encrypt_secret(value: str) -> str:
    """Encrypt a secret (RCON password, API key) for storage."""
    f = Fernet(get_encryption_key())
    return f.encrypt(value.encode()).decode()


def decrypt_secret(encrypted: str):
    """Decrypt a stored secret; None when the key has rotated."""
    f = Fernet(get_encryption_key())
    try:
        return f.decrypt(encrypted.encode()).decode()
    except InvalidToken:
        return None


def _iso(value):
    return value.isoformat() if value else None


class AppSetting(db.Model):
    __tablename__ = 'app_settings'

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Player(db.Model):
    __tablename__ = 'players'

    id = db.Column(db.String(32), primary_key=True)  # Steam64
    name = db.Column(db.String(100), nullable=False)
    avatar = db.Column(db.String(500), nullable=True)
    current_elo = db.Column(db.Integer, nullable=False, default=3000)
    starting_elo = db.Column(db.Integer, nullable=False, default=3000)
    match_count = db.Column(db.Integer, nullable=False, default=0)
    openskill_mu = db.Column(db.Float, nullable=False)
    openskill_sigma = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    rating_history = db.relationship('PlayerRatingHistory', back_populates='player',
                                     cascade='all, delete-orphan',
                                     order_by='PlayerRatingHistory.id')

    def __init__(self, **kwargs):
        kwargs.setdefault('current_elo', 3000)
        kwargs.setdefault('match_count', 0)
        super().__init__(**kwargs)
        if self.openskill_mu is None or self.openskill_sigma is None:
            self.reset_rating(self.current_elo)

    def reset_rating(self, elo: int):
        """Re-seed mu/sigma so the displayed rating equals ``elo``."""
        self.current_elo = elo
        self.openskill_sigma = sigma_for(self.match_count)
        self.openskill_mu = mu_for(elo, self.openskill_sigma)

    def to_dict(self):
        return {
            'id': self.id,
            'steamId': self.id,
            'name': self.name,
            'avatar': self.avatar,
            'currentElo': self.current_elo,
            'startingElo': self.starting_elo,
            'matchCount': self.match_count,
            'openskillMu': self.openskill_mu,
            'openskillSigma': self.openskill_sigma,
            'createdAt': _iso(self.created_at),
        }


class Team(db.Model):
    __tablename__ = 'teams'

    id = db.Column(db.String(100), primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    tag = db.Column(db.String(20), nullable=True)
    # Set only for per-round shuffle teams
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    members = db.relationship('TeamMember', back_populates='team',
                              cascade='all, delete-orphan', order_by='TeamMember.position')
    tournament = db.relationship('Tournament', back_populates='shuffle_teams')

    @property
    def steam_ids(self):
        return [m.steam_id for m in self.members]

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'tag': self.tag,
            'players': [m.to_dict() for m in self.members],
            'temporary': self.tournament_id is not None,
            'createdAt': _iso(self.created_at),
        }


class TeamMember(db.Model):
    __tablename__ = 'team_members'

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.String(100), db.ForeignKey('teams.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    steam_id = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(100), nullable=False)

    team = db.relationship('Team', back_populates='members')

    __table_args__ = (
        db.UniqueConstraint('team_id', 'steam_id', name='unique_member_per_team'),
    )

    def to_dict(self):
        return {'steamId': self.steam_id, 'name': self.name}


class Tournament(db.Model):
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(32), nullable=False)
    format = db.Column(db.String(8), nullable=False, default='bo1')
    maps = db.Column(db.JSON, nullable=False, default=list)
    team_ids = db.Column(db.JSON, nullable=False, default=list)
    veto_enabled = db.Column(db.Boolean, nullable=False, default=False)
    current_round = db.Column(db.Integer, nullable=False, default=0)

    # Shuffle configuration
    team_size = db.Column(db.Integer, nullable=True)
    round_limit_type = db.Column(db.String(20), nullable=True)
    max_rounds = db.Column(db.Integer, nullable=True)
    overtime_mode = db.Column(db.String(20), nullable=True)

    elo_template_id = db.Column(db.String(100), nullable=True)

    started_at = db.Column(db.DateTime, nullable=True)
    ended_at = db.Column(db.DateTime, nullable=True)  # administrative end
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    matches = db.relationship('Match', back_populates='tournament',
                              cascade='all, delete-orphan', order_by='Match.id')
    shuffle_teams = db.relationship('Team', back_populates='tournament', cascade='all, delete-orphan')
    registrations = db.relationship('ShuffleRegistration', back_populates='tournament',
                                    cascade='all, delete-orphan', order_by='ShuffleRegistration.id')
    round_generations = db.relationship('RoundGeneration', cascade='all, delete-orphan')
    byes = db.relationship('RoundBye', cascade='all, delete-orphan')

    @property
    def is_shuffle(self) -> bool:
        return self.type == 'shuffle'

    def to_dict(self):
        data = {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'format': self.format,
            'maps': list(self.maps or []),
            'teamIds': list(self.team_ids or []),
            'vetoEnabled': self.veto_enabled,
            'currentRound': self.current_round,
            'eloTemplateId': self.elo_template_id,
            'startedAt': _iso(self.started_at),
            'endedAt': _iso(self.ended_at),
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }
        if self.is_shuffle:
            data.update({
                'mapSequence': list(self.maps or []),
                'teamSize': self.team_size,
                'roundLimitType': self.round_limit_type,
                'maxRounds': self.max_rounds,
                'overtimeMode': self.overtime_mode,
                'playerIds': [r.player_id for r in self.registrations],
            })
        return data


class Server(db.Model):
    __tablename__ = 'servers'

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    host = db.Column(db.String(255), nullable=False)
    port = db.Column(db.Integer, nullable=False)
    password_encrypted = db.Column(db.String(500), nullable=True)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    # Exclusive pointer; written only through compare-and-set
    current_match_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('host', 'port', name='unique_server_address'),
    )

    @property
    def password(self):
        if not self.password_encrypted:
            return None
        return decrypt_secret(self.password_encrypted)

    @password.setter
    def password(self, value):
        self.password_encrypted = encrypt_secret(value) if value else None

    @property
    def is_fake(self) -> bool:
        return self.host == '0.0.0.0'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'host': self.host,
            'port': self.port,
            'enabled': self.enabled,
            'hasPassword': self.password_encrypted is not None,
            'currentMatchId': self.current_match_id,
            'createdAt': _iso(self.created_at),
        }


class Match(db.Model):
    __tablename__ = 'matches'

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(64), nullable=False, index=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    round = db.Column(db.Integer, nullable=False)
    match_number = db.Column(db.Integer, nullable=False)
    bracket_section = db.Column(db.String(20), nullable=False, default='main')
    section_round = db.Column(db.Integer, nullable=True)

    team1_id = db.Column(db.String(100), db.ForeignKey('teams.id'), nullable=True)
    team2_id = db.Column(db.String(100), db.ForeignKey('teams.id'), nullable=True)
    winner_id = db.Column(db.String(100), nullable=True)
    is_draw = db.Column(db.Boolean, nullable=False, default=False)
    is_walkover = db.Column(db.Boolean, nullable=False, default=False)
    forced = db.Column(db.Boolean, nullable=False, default=False)

    status = db.Column(db.String(20), nullable=False, default='pending')
    server_id = db.Column(db.String(64), db.ForeignKey('servers.id'), nullable=True)

    maps = db.Column(db.JSON, nullable=False, default=list)
    veto_state = db.Column(db.JSON, nullable=True)
    veto_completed = db.Column(db.Boolean, nullable=False, default=False)

    connected_players = db.Column(db.Integer, nullable=False, default=0)
    connected_steam_ids = db.Column(db.JSON, nullable=False, default=list)
    expected_players = db.Column(db.Integer, nullable=False, default=10)
    warmup_ended = db.Column(db.Boolean, nullable=False, default=False)

    # Live round score of the current map and the reported series score
    team1_score = db.Column(db.Integer, nullable=False, default=0)
    team2_score = db.Column(db.Integer, nullable=False, default=0)
    team1_series_score = db.Column(db.Integer, nullable=True)
    team2_series_score = db.Column(db.Integer, nullable=True)

    next_match_id = db.Column(db.Integer, db.ForeignKey('matches.id'), nullable=True)
    next_match_slot = db.Column(db.Integer, nullable=True)
    loser_next_match_id = db.Column(db.Integer, db.ForeignKey('matches.id'), nullable=True)
    loser_next_match_slot = db.Column(db.Integer, nullable=True)

    ratings_applied = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    loaded_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='matches')
    team1 = db.relationship('Team', foreign_keys=[team1_id])
    team2 = db.relationship('Team', foreign_keys=[team2_id])
    server = db.relationship('Server', foreign_keys=[server_id])
    next_match = db.relationship('Match', foreign_keys=[next_match_id], remote_side=[id], post_update=True)
    loser_next_match = db.relationship('Match', foreign_keys=[loser_next_match_id], remote_side=[id],
                                       post_update=True)
    map_results = db.relationship('MatchMapResult', back_populates='match',
                                  cascade='all, delete-orphan', order_by='MatchMapResult.map_number')
    events = db.relationship('MatchEvent', back_populates='match', cascade='all, delete-orphan')
    player_stats = db.relationship('PlayerMatchStats', back_populates='match', cascade='all, delete-orphan')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'slug', name='unique_match_slug'),
    )

    def team_ids(self):
        return [t for t in (self.team1_id, self.team2_id) if t]

    def slot_team(self, slot: int):
        return self.team1_id if slot == 1 else self.team2_id

    def set_slot(self, slot: int, team_id):
        if slot == 1:
            self.team1_id = team_id
        else:
            self.team2_id = team_id

    def map_wins(self):
        team1 = sum(1 for r in self.map_results if r.winner_slot == 1)
        team2 = sum(1 for r in self.map_results if r.winner_slot == 2)
        return team1, team2

    def loser_id(self):
        if not self.winner_id or not self.team1_id or not self.team2_id:
            return None
        return self.team2_id if self.winner_id == self.team1_id else self.team1_id

    def to_dict(self, include_teams: bool = True):
        team1_maps, team2_maps = self.map_wins()
        data = {
            'id': self.id,
            'slug': self.slug,
            'tournamentId': self.tournament_id,
            'round': self.round,
            'matchNumber': self.match_number,
            'bracketSection': self.bracket_section,
            'sectionRound': self.section_round,
            'status': self.status,
            'team1Id': self.team1_id,
            'team2Id': self.team2_id,
            'winnerId': self.winner_id,
            'isDraw': self.is_draw,
            'isWalkover': self.is_walkover,
            'forced': self.forced,
            'serverId': self.server_id,
            'maps': list(self.maps or []),
            'vetoCompleted': self.veto_completed,
            'vetoState': self.veto_state,
            'connectedPlayers': self.connected_players,
            'connectedSteamIds': list(self.connected_steam_ids or []),
            'expectedPlayers': self.expected_players,
            'team1Score': self.team1_score,
            'team2Score': self.team2_score,
            'team1SeriesScore': self.team1_series_score,
            'team2SeriesScore': self.team2_series_score,
            'team1MapWins': team1_maps,
            'team2MapWins': team2_maps,
            'mapResults': [r.to_dict() for r in self.map_results],
            'nextMatchId': self.next_match_id,
            'loserNextMatchId': self.loser_next_match_id,
            'createdAt': _iso(self.created_at),
            'loadedAt': _iso(self.loaded_at),
            'completedAt': _iso(self.completed_at),
        }
        if include_teams:
            data['team1'] = self.team1.to_dict() if self.team1 else None
            data['team2'] = self.team2.to_dict() if self.team2 else None
        return data


class MatchMapResult(db.Model):
    __tablename__ = 'match_map_results'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('matches.id'), nullable=False)
    map_number = db.Column(db.Integer, nullable=False)
    map_name = db.Column(db.String(64), nullable=True)
    team1_score = db.Column(db.Integer, nullable=False, default=0)
    team2_score = db.Column(db.Integer, nullable=False, default=0)
    winner_slot = db.Column(db.Integer, nullable=True)  # 1, 2 or None for a tie
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    match = db.relationship('Match', back_populates='map_results')

    __table_args__ = (
        db.UniqueConstraint('match_id', 'map_number', name='unique_map_result'),
    )

    def to_dict(self):
        return {
            'mapNumber': self.map_number,
            'mapName': self.map_name,
            'team1Score': self.team1_score,
            'team2Score': self.team2_score,
            'winner': f'team{self.winner_slot}' if self.winner_slot else None,
        }


class MatchEvent(db.Model):
    """Ledger of applied game-server events; the unique key makes re-delivery a no-op."""

    __tablename__ = 'match_events'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('matches.id'), nullable=False)
    event_key = db.Column(db.String(128), nullable=False)
    event_type = db.Column(db.String(32), nullable=False)
    payload = db.Column(db.JSON, nullable=True)
    received_at = db.Column(db.DateTime, default=datetime.utcnow)

    match = db.relationship('Match', back_populates='events')

    __table_args__ = (
        db.UniqueConstraint('match_id', 'event_key', name='unique_match_event'),
    )


class PlayerMatchStats(db.Model):
    __tablename__ = 'player_match_stats'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('matches.id'), nullable=False)
    player_id = db.Column(db.String(32), nullable=False)
    team_id = db.Column(db.String(100), nullable=True)
    kills = db.Column(db.Integer, nullable=False, default=0)
    deaths = db.Column(db.Integer, nullable=False, default=0)
    assists = db.Column(db.Integer, nullable=False, default=0)
    flash_assists = db.Column(db.Integer, nullable=False, default=0)
    headshot_kills = db.Column(db.Integer, nullable=False, default=0)
    damage = db.Column(db.Integer, nullable=False, default=0)
    utility_damage = db.Column(db.Integer, nullable=False, default=0)
    kast = db.Column(db.Float, nullable=False, default=0)
    mvps = db.Column(db.Integer, nullable=False, default=0)
    score = db.Column(db.Integer, nullable=False, default=0)
    rounds_played = db.Column(db.Integer, nullable=False, default=0)

    match = db.relationship('Match', back_populates='player_stats')

    __table_args__ = (
        db.UniqueConstraint('match_id', 'player_id', name='unique_player_stats'),
    )

    STAT_FIELDS = {
        'kills': 'kills',
        'deaths': 'deaths',
        'assists': 'assists',
        'flashAssists': 'flash_assists',
        'headshotKills': 'headshot_kills',
        'damage': 'damage',
        'utilityDamage': 'utility_damage',
        'kast': 'kast',
        'mvps': 'mvps',
        'score': 'score',
        'roundsPlayed': 'rounds_played',
    }

    @property
    def adr(self) -> float:
        return self.damage / self.rounds_played if self.rounds_played else 0.0

    def stat_line(self) -> dict:
        return {key: getattr(self, attr) or 0 for key, attr in self.STAT_FIELDS.items()}

    def to_dict(self):
        data = self.stat_line()
        data.update({'playerId': self.player_id, 'teamId': self.team_id, 'adr': round(self.adr, 1)})
        return data


class PlayerRatingHistory(db.Model):
    __tablename__ = 'player_rating_history'

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.String(32), db.ForeignKey('players.id'), nullable=False)
    # Nulled, not deleted, when the tournament goes away
    match_id = db.Column(db.Integer, nullable=True)
    match_slug = db.Column(db.String(64), nullable=True)
    elo_before = db.Column(db.Integer, nullable=False)
    elo_after = db.Column(db.Integer, nullable=False)
    elo_change = db.Column(db.Integer, nullable=False)
    base_elo_after = db.Column(db.Integer, nullable=False)
    stat_adjustment = db.Column(db.Integer, nullable=False, default=0)
    mu_before = db.Column(db.Float, nullable=True)
    mu_after = db.Column(db.Float, nullable=True)
    sigma_before = db.Column(db.Float, nullable=True)
    sigma_after = db.Column(db.Float, nullable=True)
    template_id = db.Column(db.String(100), nullable=True)
    match_result = db.Column(db.String(10), nullable=False)  # 'win', 'loss', 'draw'
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    player = db.relationship('Player', back_populates='rating_history')

    __table_args__ = (
        db.UniqueConstraint('player_id', 'match_id', name='unique_rating_per_match'),
    )

    def to_dict(self):
        return {
            'playerId': self.player_id,
            'matchId': self.match_id,
            'matchSlug': self.match_slug,
            'eloBefore': self.elo_before,
            'eloAfter': self.elo_after,
            'eloChange': self.elo_change,
            'baseEloAfter': self.base_elo_after,
            'statAdjustment': self.stat_adjustment,
            'muBefore': self.mu_before,
            'muAfter': self.mu_after,
            'sigmaBefore': self.sigma_before,
            'sigmaAfter': self.sigma_after,
            'templateId': self.template_id,
            'matchResult': self.match_result,
            'createdAt': _iso(self.created_at),
        }


class MapPool(db.Model):
    __tablename__ = 'map_pools'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    map_ids = db.Column(db.JSON, nullable=False, default=list)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'mapIds': list(self.map_ids or []),
            'isDefault': self.is_default,
            'enabled': self.enabled,
            'createdAt': _iso(self.created_at),
        }


class EloTemplate(db.Model):
    __tablename__ = 'elo_templates'

    id = db.Column(db.String(100), primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    weights = db.Column(db.JSON, nullable=False, default=dict)
    max_adjustment = db.Column(db.Float, nullable=True)
    min_adjustment = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'enabled': self.enabled,
            'weights': dict(self.weights or {}),
            'maxAdjustment': self.max_adjustment,
            'minAdjustment': self.min_adjustment,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }


class ShuffleRegistration(db.Model):
    __tablename__ = 'shuffle_registrations'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    player_id = db.Column(db.String(32), db.ForeignKey('players.id'), nullable=False)
    registered_at = db.Column(db.DateTime, default=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='registrations')
    player = db.relationship('Player')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'player_id', name='unique_registration'),
    )


class RoundGeneration(db.Model):
    """Marks round N as generated; the unique key arbitrates concurrent advances."""

    __tablename__ = 'round_generations'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    round_num = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'round_num', name='unique_round_generation'),
    )


class RoundBye(db.Model):
    __tablename__ = 'round_byes'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    round_num = db.Column(db.Integer, nullable=False)
    player_id = db.Column(db.String(32), nullable=False)

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'round_num', 'player_id', name='unique_round_bye'),
    )
