import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from shared.events import EventType, round_started_event, tournament_event
from shared.pubsub import EventPublisher
from shared.state_machine import TournamentState, TransitionError
from .elo_templates import EloTemplateService
from .errors import OrchestratorError, ValidationError, ConflictError, NotFoundError, ExternalServiceError
from .match_engine import MatchEngine
from .models import (
    db, Tournament, Team, Match, Player, PlayerMatchStats, PlayerRatingHistory,
    RoundBye, RoundGeneration, ShuffleRegistration,
)
from .status import aggregate_status, state_machine_for
from .tournament_kinds import TOURNAMENT_TYPES, get_kind, round_complete
from .veto import VETO_POOL_SIZE

logger = logging.getLogger(__name__)

FORMATS = ['bo1', 'bo3', 'bo5']
ROUND_LIMIT_TYPES = ['first_to_13', 'max_rounds']
OVERTIME_MODES = ['enabled', 'disabled']
MIN_TEAM_SIZE = 2
MAX_TEAM_SIZE = 10

# Fields that reshape the bracket; frozen once the first round exists
STRUCTURAL_FIELDS = {
    'type': 'type',
    'format': 'format',
    'maps': 'maps',
    'mapSequence': 'maps',
    'teamIds': 'team_ids',
    'vetoEnabled': 'veto_enabled',
    'teamSize': 'team_size',
    'roundLimitType': 'round_limit_type',
    'maxRounds': 'max_rounds',
    'overtimeMode': 'overtime_mode',
}


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class TournamentRegistry:
    """
    Manages the tournament lifecycle:
    - create/update/delete the tournament record
    - start: lay out the bracket or the first shuffle round
    - advance: generate round N+1 once round N is complete
    - status, round status, bracket and leaderboard views
    """

    def __init__(self, engine: MatchEngine, templates: EloTemplateService = None,
                 publisher: EventPublisher = None, expected_players: int = 10,
                 default_team_size: int = 5, auto_advance: bool = True, auto_allocate: bool = False):
        self.engine = engine
        self.templates = templates or EloTemplateService()
        self.publisher = publisher or EventPublisher()
        self.expected_players = expected_players
        self.default_team_size = default_team_size
        self.auto_advance = auto_advance
        self.auto_allocate = auto_allocate

    # ==================== Lookup ====================

    def get_tournament(self) -> Optional[Tournament]:
        return Tournament.query.order_by(Tournament.id.desc()).first()

    def require_tournament(self) -> Tournament:
        tournament = self.get_tournament()
        if tournament is None:
            raise NotFoundError('No tournament exists')
        return tournament

    def kind(self, tournament: Tournament):
        expected = self.expected_players
        if tournament.is_shuffle:
            expected = (tournament.team_size or self.default_team_size) * 2
        return get_kind(tournament, expected_players=expected)

    def matches(self, tournament: Tournament) -> List[Match]:
        return self.engine.list_matches(tournament)

    def status(self, tournament: Tournament) -> TournamentState:
        return aggregate_status(tournament, self.matches(tournament))

    # ==================== Configuration ====================

    def _validate(self, data: dict) -> dict:
        """Validate a full configuration and return model field values."""
        name = data.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('Tournament name is required')

        t_type = data.get('type')
        if t_type not in TOURNAMENT_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(TOURNAMENT_TYPES)}")
        shuffle = t_type == 'shuffle'

        series_format = 'bo1' if shuffle else data.get('format')
        if series_format not in FORMATS:
            raise ValidationError(f"format must be one of: {', '.join(FORMATS)}")

        maps = data.get('mapSequence') if shuffle and 'mapSequence' in data else data.get('maps')
        if not isinstance(maps, list) or not all(isinstance(m, str) and m.strip() for m in maps):
            raise ValidationError('maps must be a list of map names')
        if not maps:
            raise ValidationError('At least one map is required')

        values = {
            'name': name.strip(),
            'type': t_type,
            'format': series_format,
            'maps': [m.strip() for m in maps],
            'team_ids': [],
            'veto_enabled': False,
            'team_size': None,
            'round_limit_type': None,
            'max_rounds': None,
            'overtime_mode': None,
        }

        if shuffle:
            team_size = data.get('teamSize', self.default_team_size)
            if not _is_int(team_size) or not MIN_TEAM_SIZE <= team_size <= MAX_TEAM_SIZE:
                raise ValidationError(f'Team size must be between {MIN_TEAM_SIZE} and {MAX_TEAM_SIZE} players')
            round_limit_type = data.get('roundLimitType', 'first_to_13')
            if round_limit_type not in ROUND_LIMIT_TYPES:
                raise ValidationError(f"roundLimitType must be one of: {', '.join(ROUND_LIMIT_TYPES)}")
            max_rounds = data.get('maxRounds', 24)
            if not _is_int(max_rounds) or max_rounds < 1:
                raise ValidationError('maxRounds must be a positive integer')
            overtime_mode = data.get('overtimeMode', 'enabled')
            if overtime_mode not in OVERTIME_MODES:
                raise ValidationError(f"overtimeMode must be one of: {', '.join(OVERTIME_MODES)}")
            values.update(team_size=team_size, round_limit_type=round_limit_type,
                          max_rounds=max_rounds, overtime_mode=overtime_mode)
        else:
            team_ids = data.get('teamIds')
            if not isinstance(team_ids, list) or not all(isinstance(t, str) for t in team_ids):
                raise ValidationError('teamIds must be a list of team ids')
            if len(set(team_ids)) != len(team_ids):
                raise ValidationError('teamIds must not contain duplicates')
            if len(team_ids) < 2:
                raise ValidationError('At least 2 teams are required')
            for team_id in team_ids:
                if db.session.get(Team, team_id) is None:
                    raise ValidationError(f"Team '{team_id}' not found")

            veto_enabled = data.get('vetoEnabled', len(maps) == VETO_POOL_SIZE)
            if not isinstance(veto_enabled, bool):
                raise ValidationError('vetoEnabled must be a boolean')
            if veto_enabled and len(maps) != VETO_POOL_SIZE:
                raise ValidationError(f'Veto requires exactly {VETO_POOL_SIZE} maps in the map pool')
            values.update(team_ids=list(team_ids), veto_enabled=veto_enabled)

        template_id = data.get('eloTemplateId')
        if template_id is not None:
            if not isinstance(template_id, str) or self.templates.get_template(template_id) is None:
                raise ValidationError(f"ELO template '{template_id}' not found")
        values['elo_template_id'] = template_id
        return values

    def _snapshot(self, tournament: Tournament) -> dict:
        data = {
            'name': tournament.name,
            'type': tournament.type,
            'format': tournament.format,
            'maps': list(tournament.maps or []),
            'teamIds': list(tournament.team_ids or []),
            'vetoEnabled': tournament.veto_enabled,
            'eloTemplateId': tournament.elo_template_id,
        }
        if tournament.is_shuffle:
            data.update({
                'mapSequence': list(tournament.maps or []),
                'teamSize': tournament.team_size,
                'roundLimitType': tournament.round_limit_type,
                'maxRounds': tournament.max_rounds,
                'overtimeMode': tournament.overtime_mode,
            })
        return data

    def create_tournament(self, data: dict) -> Tournament:
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')
        if self.get_tournament() is not None:
            raise ConflictError('A tournament already exists; delete it before creating a new one')

        tournament = Tournament(**self._validate(data))
        db.session.add(tournament)
        db.session.commit()
        logger.info(f"Created {tournament.type} tournament '{tournament.name}'")
        self.publisher.publish(tournament_event(EventType.TOURNAMENT_CREATED, tournament.id,
                                                name=tournament.name, type=tournament.type))
        return tournament

    def update_tournament(self, data: dict) -> Tournament:
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')
        tournament = self.require_tournament()
        state = self.status(tournament)

        if state != TournamentState.SETUP:
            current = self._snapshot(tournament)
            for field in STRUCTURAL_FIELDS:
                if field in data and data[field] != current.get(field):
                    raise ConflictError(f"Cannot change {field} once the tournament has started")

        merged = self._snapshot(tournament)
        if state == TournamentState.SETUP and ('maps' in data or 'mapSequence' in data) \
                and 'vetoEnabled' not in data:
            merged.pop('vetoEnabled')
        if 'maps' in data:
            merged.pop('mapSequence', None)
        merged.update(data)
        values = self._validate(merged)
        for attr, value in values.items():
            setattr(tournament, attr, value)
        db.session.commit()
        logger.info(f"Updated tournament '{tournament.name}'")
        return tournament

    def delete_tournament(self):
        tournament = self.require_tournament()
        for match in self.matches(tournament):
            self.engine.servers.release(match)
        match_ids = [m.id for m in tournament.matches]
        if match_ids:
            PlayerRatingHistory.query.filter(PlayerRatingHistory.match_id.in_(match_ids)).update(
                {PlayerRatingHistory.match_id: None}, synchronize_session=False
            )
        tournament_id = tournament.id
        db.session.delete(tournament)
        db.session.commit()
        logger.info(f"Deleted tournament {tournament_id}")
        self.publisher.publish(tournament_event(EventType.TOURNAMENT_DELETED, tournament_id))

    def register_players(self, player_ids) -> Tournament:
        """Replace the shuffle registration list (setup only)."""
        tournament = self.require_tournament()
        if not tournament.is_shuffle:
            raise ValidationError('Player registration is only available for shuffle tournaments')
        if self.status(tournament) != TournamentState.SETUP:
            raise ConflictError('Players can only be registered before the tournament starts')
        if not isinstance(player_ids, list) or not all(isinstance(p, str) for p in player_ids):
            raise ValidationError('playerIds must be a list of player ids')
        if len(set(player_ids)) != len(player_ids):
            raise ValidationError('playerIds must not contain duplicates')
        for player_id in player_ids:
            if db.session.get(Player, player_id) is None:
                raise ValidationError(f"Player '{player_id}' not found")

        ShuffleRegistration.query.filter_by(tournament_id=tournament.id).delete()
        for player_id in player_ids:
            db.session.add(ShuffleRegistration(tournament_id=tournament.id, player_id=player_id))
        db.session.commit()
        db.session.refresh(tournament)
        logger.info(f"Registered {len(player_ids)} players for shuffle tournament {tournament.id}")
        return tournament

    # ==================== Round progression ====================

    def _claim_round(self, tournament: Tournament, round_num: int):
        """Insert the round-generation marker; losing a race surfaces as a conflict."""
        db.session.add(RoundGeneration(tournament_id=tournament.id, round_num=round_num))
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(f"Round {round_num} has already been generated")

    def start(self) -> List[Match]:
        tournament = self.require_tournament()
        sm = state_machine_for(tournament, self.matches(tournament))
        try:
            sm.transition('start')
            self._claim_round(tournament, 1)
            tournament.current_round = 1
            tournament.started_at = datetime.utcnow()
            created = self.kind(tournament).generate_initial()
            db.session.flush()
            self.engine.prepare_round(tournament, 1)
            db.session.commit()
        except (OrchestratorError, TransitionError):
            db.session.rollback()
            raise

        logger.info(f"Tournament {tournament.id} started with {len(created)} matches")
        self.publisher.publish(tournament_event(EventType.TOURNAMENT_STARTED, tournament.id,
                                                matches=len(created)))
        self.publisher.publish(round_started_event(
            tournament.id, 1, len([m for m in created if m.round == 1])
        ))
        self._allocate(tournament)
        return created

    def advance(self) -> dict:
        """Generate the next round; the current round must be entirely completed."""
        tournament = self.require_tournament()
        matches = self.matches(tournament)
        state = aggregate_status(tournament, matches)
        if state != TournamentState.IN_PROGRESS:
            raise ConflictError(f"Tournament is {state.value}; rounds cannot be advanced")

        kind = self.kind(tournament)
        current = tournament.current_round
        current_matches = [m for m in matches if m.round == current]
        if not round_complete(current_matches):
            done = len([m for m in current_matches if m.status == 'completed'])
            raise ConflictError(
                f"Round {current} is not complete ({done}/{len(current_matches)} matches completed)"
            )
        kind.validate_round_results(current_matches)

        next_round = current + 1
        if next_round > kind.total_rounds(matches):
            raise ConflictError('No rounds remain to be generated')

        try:
            self._claim_round(tournament, next_round)
            created = kind.generate_round(next_round, matches)
            tournament.current_round = next_round
            db.session.flush()
            self.engine.prepare_round(tournament, next_round)
            db.session.commit()
        except (OrchestratorError, TransitionError):
            db.session.rollback()
            raise

        logger.info(f"Tournament {tournament.id} advanced to round {next_round}")
        self.publisher.publish(tournament_event(EventType.ROUND_COMPLETED, tournament.id, round=current))
        self.publisher.publish(round_started_event(tournament.id, next_round, len(created)))
        self._allocate(tournament)
        return {'round': next_round, 'matches': created}

    def on_match_completed(self, match: Match):
        """Advance automatically once the last match of the current round completes."""
        tournament = match.tournament
        if tournament is None or tournament.ended_at is not None:
            return
        matches = self.matches(tournament)
        if aggregate_status(tournament, matches) == TournamentState.COMPLETED:
            logger.info(f"Tournament {tournament.id} completed")
            self.publisher.publish(tournament_event(EventType.TOURNAMENT_COMPLETED, tournament.id))
            return
        if not self.auto_advance:
            self._allocate(tournament)
            return

        current = [m for m in matches if m.round == tournament.current_round]
        if not round_complete(current):
            self._allocate(tournament)
            return
        try:
            self.advance()
        except ConflictError as e:
            logger.info(f"Round {tournament.current_round} not advanced automatically: {e.message}")

    def end(self) -> Tournament:
        """Administrative end: remaining matches are force-ended."""
        tournament = self.require_tournament()
        matches = self.matches(tournament)
        sm = state_machine_for(tournament, matches)
        sm.transition('end')

        tournament.ended_at = datetime.utcnow()
        db.session.flush()
        for match in matches:
            if match.status != 'completed':
                self.engine.force_end(match)
        db.session.commit()
        logger.warning(f"Tournament {tournament.id} ended by administrator")
        self.publisher.publish(tournament_event(EventType.TOURNAMENT_COMPLETED, tournament.id, forced=True))
        return tournament

    def _active_matches(self, tournament: Tournament) -> List[Match]:
        return [m for m in self.matches(tournament) if m.status in ('loaded', 'live') and m.server_id]

    def reset(self) -> dict:
        """Stop whatever is running and return the tournament to setup with no rounds."""
        tournament = self.require_tournament()
        ended = failed = 0
        for match in self._active_matches(tournament):
            try:
                self.engine.end_on_server(match)
                ended += 1
            except ExternalServiceError as e:
                logger.warning(f"Could not stop match {match.slug} on server {match.server_id}: {e.message}")
                failed += 1

        for match in tournament.matches:
            self.engine.servers.release(match)
        match_ids = [m.id for m in tournament.matches]
        if match_ids:
            PlayerRatingHistory.query.filter(PlayerRatingHistory.match_id.in_(match_ids)).update(
                {PlayerRatingHistory.match_id: None}, synchronize_session=False
            )
        tournament.matches.clear()
        tournament.round_generations.clear()
        tournament.byes.clear()
        tournament.shuffle_teams.clear()
        tournament.current_round = 0
        tournament.started_at = None
        tournament.ended_at = None
        db.session.commit()

        logger.warning(f"Tournament {tournament.id} reset to setup ({ended} stopped, {failed} unreachable)")
        self.publisher.publish(tournament_event(EventType.TOURNAMENT_RESET, tournament.id,
                                                matchesEnded=ended, matchesEndedFailed=failed))
        return {'tournament': tournament, 'matchesEnded': ended, 'matchesEndedFailed': failed}

    def restart(self) -> dict:
        """Restart every loaded or live match, then hand servers out again."""
        tournament = self.require_tournament()
        state = self.status(tournament)
        if state != TournamentState.IN_PROGRESS:
            raise ConflictError(f"Tournament is {state.value}; matches cannot be restarted")

        restarted, failed = [], []
        for match in self._active_matches(tournament):
            try:
                self.engine.restart_match(match, reload=False)
                restarted.append(match.slug)
            except ExternalServiceError as e:
                logger.warning(f"Could not restart match {match.slug}: {e.message}")
                failed.append(match.slug)

        allocated = self.engine.allocate_ready_matches(tournament)
        logger.info(f"Tournament {tournament.id} restarted {len(restarted)} matches, "
                    f"allocated {len(allocated)}")
        return {
            'restarted': restarted,
            'failed': failed,
            'allocated': [m.slug for m in allocated],
        }

    def server_availability(self) -> int:
        """Enabled servers with no match that report online."""
        servers = self.engine.servers
        return len([s for s in servers.free_servers() if servers.check_status(s) == 'online'])

    def _allocate(self, tournament: Tournament):
        if self.auto_allocate:
            self.engine.allocate_ready_matches(tournament)

    # ==================== Views ====================

    def describe(self, tournament: Tournament) -> dict:
        matches = self.matches(tournament)
        sm = state_machine_for(tournament, matches)
        kind = self.kind(tournament)
        total = kind.total_rounds(matches) if matches else self._planned_rounds(tournament)
        data = tournament.to_dict()
        data.update({
            'status': sm.state.value,
            'totalRounds': total,
            'roundLabel': kind.describe_round(tournament.current_round, total) if tournament.current_round else None,
            'matchCount': len(matches),
            'allowedActions': sm.allowed_actions,
            'formAccess': sm.form_access,
        })
        return data

    def _planned_rounds(self, tournament: Tournament) -> int:
        from . import bracket
        teams = len(tournament.team_ids or [])
        if tournament.is_shuffle:
            return len(tournament.maps or [])
        if tournament.type == 'round_robin':
            return bracket.round_robin_rounds(teams)
        if tournament.type == 'swiss':
            return bracket.swiss_rounds(teams)
        size = bracket.next_power_of_two(max(teams, 2))
        k = size.bit_length() - 1
        if tournament.type == 'double_elimination':
            return max(k, 2 * (k - 1) + 1) + 1
        return k

    def round_status(self, tournament: Tournament, round_num: int = None) -> dict:
        matches = self.matches(tournament)
        kind = self.kind(tournament)
        number = round_num or tournament.current_round
        round_matches = [m for m in matches if m.round == number]
        completed = len([m for m in round_matches if m.status == 'completed'])
        total = kind.total_rounds(matches) if matches else self._planned_rounds(tournament)
        data = {
            'roundNumber': number,
            'totalRounds': total,
            'label': kind.describe_round(number, total) if number else None,
            'totalMatches': len(round_matches),
            'completedMatches': completed,
            'pendingMatches': len(round_matches) - completed,
            'isComplete': round_complete(round_matches),
            'map': None,
        }
        if tournament.is_shuffle:
            maps = tournament.maps or []
            data['map'] = maps[number - 1] if 1 <= number <= len(maps) else None
            data['sittingOut'] = [
                b.player_id for b in RoundBye.query.filter_by(tournament_id=tournament.id, round_num=number)
            ]
        return data

    def bracket(self, tournament: Tournament) -> dict:
        matches = self.matches(tournament)
        kind = self.kind(tournament)
        total = kind.total_rounds(matches)
        rounds = []
        for number in sorted({m.round for m in matches}):
            entries = []
            for m in matches:
                if m.round == number:
                    data = m.to_dict()
                    data['label'] = kind.describe_match(m, total)
                    entries.append(data)
            rounds.append({
                'round': number,
                'label': kind.describe_round(number, total),
                'matches': entries,
            })
        return {'type': tournament.type, 'totalRounds': total, 'rounds': rounds}

    def leaderboard(self, tournament: Tournament) -> List[dict]:
        matches = [m for m in self.matches(tournament) if m.status == 'completed']
        if tournament.is_shuffle:
            return self._player_leaderboard(tournament, matches)
        return self._team_standings(tournament, matches)

    def _team_standings(self, tournament: Tournament, matches: List[Match]) -> List[dict]:
        table = {}
        for seed, team_id in enumerate(tournament.team_ids or []):
            team = db.session.get(Team, team_id)
            table[team_id] = {'teamId': team_id, 'name': team.name if team else team_id,
                              'wins': 0, 'losses': 0, 'draws': 0, 'seed': seed}
        for m in matches:
            if m.winner_id in table:
                table[m.winner_id]['wins'] += 1
                loser = m.loser_id()
                if loser in table:
                    table[loser]['losses'] += 1
            elif m.is_draw:
                for team_id in m.team_ids():
                    if team_id in table:
                        table[team_id]['draws'] += 1

        standings = sorted(table.values(), key=lambda s: (-s['wins'], -s['draws'], s['losses'], s['seed']))
        for rank, entry in enumerate(standings, start=1):
            entry['rank'] = rank
            del entry['seed']
        return standings

    def _player_leaderboard(self, tournament: Tournament, matches: List[Match]) -> List[dict]:
        match_ids = [m.id for m in matches]
        rows = {}
        for reg in tournament.registrations:
            player = reg.player
            rows[reg.player_id] = {
                'playerId': reg.player_id,
                'name': player.name if player else reg.player_id,
                'currentElo': player.current_elo if player else None,
                'wins': 0, 'losses': 0, 'draws': 0, 'matchesPlayed': 0,
                'eloChange': 0, 'adr': 0.0,
            }

        for m in matches:
            if m.is_walkover:
                continue
            for team, slot in ((m.team1, 1), (m.team2, 2)):
                if team is None:
                    continue
                team_id = m.team1_id if slot == 1 else m.team2_id
                for steam_id in team.steam_ids:
                    row = rows.get(steam_id)
                    if row is None:
                        continue
                    row['matchesPlayed'] += 1
                    if m.is_draw:
                        row['draws'] += 1
                    elif m.winner_id == team_id:
                        row['wins'] += 1
                    elif m.winner_id:
                        row['losses'] += 1

        if match_ids:
            for entry in PlayerRatingHistory.query.filter(PlayerRatingHistory.match_id.in_(match_ids)):
                if entry.player_id in rows:
                    rows[entry.player_id]['eloChange'] += entry.elo_change
            damage = {}
            for stat in PlayerMatchStats.query.filter(PlayerMatchStats.match_id.in_(match_ids)):
                total = damage.setdefault(stat.player_id, [0, 0])
                total[0] += stat.damage
                total[1] += stat.rounds_played
            for player_id, (dmg, rounds) in damage.items():
                if player_id in rows and rounds:
                    rows[player_id]['adr'] = round(dmg / rounds, 1)

        return sorted(rows.values(), key=lambda r: (-r['wins'], -(r['currentElo'] or 0), -r['adr']))

    # ==================== ELO template ====================

    def get_elo_template(self, tournament: Tournament):
        return self.templates.resolve_for_tournament(tournament.elo_template_id)

    def set_elo_template(self, template_id) -> Tournament:
        tournament = self.require_tournament()
        if template_id is not None:
            template = self.templates.get_template(template_id) if isinstance(template_id, str) else None
            if template is None:
                raise ValidationError(f"ELO template '{template_id}' not found")
            if not template.enabled:
                raise ValidationError(f"ELO template '{template_id}' is disabled")
        tournament.elo_template_id = template_id
        db.session.commit()
        return tournament
