import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy import or_

from shared.events import match_state_event, match_completed_event, server_event, EventType, tournament_event
from shared.pubsub import EventPublisher
from shared.state_machine import MatchStateMachine, MatchState, match_ready_guard
from .errors import ConflictError, NotFoundError, ValidationError, ExternalServiceError
from .models import db, Match, MatchMapResult, Tournament, PlayerMatchStats
from .rating_service import RatingService
from .server_channel import (
    END_MATCH_COMMAND, ServerChannel, build_match_config, matchzy_settings_commands, matchzy_webhook_commands,
)
from .server_registry import ServerRegistry
from .veto import apply_veto_action, is_veto_complete, final_map_list

logger = logging.getLogger(__name__)


def determine_winner(match: Match) -> Tuple[Optional[str], bool]:
    """Winner by map wins, then reported series score, then live round score.

    Returns (winner_id, is_draw). A match with no scoring data at all has
    neither a winner nor a draw.
    """
    team1_maps, team2_maps = match.map_wins()
    comparisons = [(team1_maps, team2_maps)]
    if match.team1_series_score is not None and match.team2_series_score is not None:
        comparisons.append((match.team1_series_score, match.team2_series_score))
    comparisons.append((match.team1_score or 0, match.team2_score or 0))

    for team1, team2 in comparisons:
        if team1 > team2:
            return match.team1_id, False
        if team2 > team1:
            return match.team2_id, False

    has_data = (
        bool(match.map_results)
        or match.team1_series_score is not None
        or bool(match.team1_score or match.team2_score)
    )
    return None, has_data


class MatchEngine:
    """
    Drives matches through pending -> ready -> loaded -> live -> completed.
    Every status change goes through MatchStateMachine; completion applies
    ratings once and feeds the bracket links.
    """

    def __init__(self, servers: ServerRegistry, ratings: RatingService, channel: ServerChannel,
                 publisher: EventPublisher = None, settings=None,
                 on_completed: Callable[[Match], None] = None, webhook_token: str = None):
        self.servers = servers
        self.ratings = ratings
        self.channel = channel
        self.publisher = publisher or EventPublisher()
        self.settings = settings
        self.on_completed = on_completed
        self.webhook_token = webhook_token

    # -- lookup --

    def get_match(self, slug: str) -> Match:
        match = Match.query.filter_by(slug=slug).order_by(Match.id.desc()).first()
        if match is None:
            raise NotFoundError(f"Match '{slug}' not found")
        return match

    def list_matches(self, tournament: Tournament, round_num: int = None, status: str = None) -> List[Match]:
        query = Match.query.filter_by(tournament_id=tournament.id)
        if round_num is not None:
            query = query.filter_by(round=round_num)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(Match.round, Match.match_number, Match.id).all()

    # -- transitions --

    @staticmethod
    def guard_context(match: Match) -> dict:
        return {
            'team1_id': match.team1_id,
            'team2_id': match.team2_id,
            'veto_required': not match.veto_completed,
            'veto_completed': match.veto_completed,
            'round': match.round,
            'current_round': match.tournament.current_round if match.tournament else 0,
            'server_id': match.server_id,
            'connected_players': match.connected_players,
            'expected_players': match.expected_players,
        }

    def _transition(self, match: Match, action: str) -> MatchState:
        sm = MatchStateMachine.from_state_string(match.status)
        old_state = match.status
        new_state = sm.transition(action, self.guard_context(match))
        match.status = new_state.value

        now = datetime.utcnow()
        if new_state == MatchState.LOADED:
            match.loaded_at = now
        elif new_state == MatchState.COMPLETED:
            match.completed_at = now
        elif new_state == MatchState.READY:
            match.loaded_at = None

        if not sm.holds_server and match.server_id is not None:
            server_id = match.server_id
            self.servers.release(match)
            self.publisher.publish(server_event(match.tournament_id, server_id, match.slug, assigned=False))

        logger.info(f"Match {match.slug}: {old_state} -> {new_state.value} ({action})")
        self.publisher.publish(match_state_event(match.tournament_id, match.slug, old_state, new_state.value))
        return new_state

    def try_prepare(self, match: Match) -> bool:
        if match.status != MatchState.PENDING.value:
            return False
        if not match_ready_guard(self.guard_context(match)):
            return False
        self._transition(match, 'prepare')
        return True

    def prepare_round(self, tournament: Tournament, round_num: int) -> List[Match]:
        prepared = []
        for match in self.list_matches(tournament, round_num=round_num):
            if self.resolve_walkover(match) or self.try_prepare(match):
                prepared.append(match)
        return prepared

    # -- bracket feeding --

    def _feeders(self, match: Match) -> List[Match]:
        return Match.query.filter(
            or_(Match.next_match_id == match.id, Match.loser_next_match_id == match.id)
        ).all()

    def resolve_walkover(self, match: Match) -> bool:
        """Complete a match that can never be played because a slot stays empty."""
        if match.status == MatchState.COMPLETED.value or (match.team1_id and match.team2_id):
            return False
        feeders = self._feeders(match)
        if any(f.status != MatchState.COMPLETED.value or (f.is_draw and not f.winner_id) for f in feeders):
            return False

        match.winner_id = match.team1_id or match.team2_id
        match.is_walkover = True
        self._transition(match, 'walkover')
        logger.info(f"Match {match.slug} resolved as walkover (winner: {match.winner_id})")
        self._propagate(match)
        return True

    def _settle(self, match: Match):
        if not self.resolve_walkover(match):
            self.try_prepare(match)

    def _propagate(self, match: Match):
        if match.next_match_id:
            nxt = db.session.get(Match, match.next_match_id)
            nxt.set_slot(match.next_match_slot, match.winner_id)
            self._settle(nxt)
        if match.loser_next_match_id:
            lower = db.session.get(Match, match.loser_next_match_id)
            lower.set_slot(match.loser_next_match_slot, match.loser_id())
            self._settle(lower)

    # -- veto --

    def apply_veto(self, match: Match, team: str, action: str, map_name: str = None, side: str = None) -> Match:
        tournament = match.tournament
        if match.veto_completed:
            raise ConflictError(f"Veto for match {match.slug} is already completed")
        if match.status != MatchState.PENDING.value:
            raise ConflictError(f"Match {match.slug} is {match.status}; veto is closed")
        if not (match.team1_id and match.team2_id):
            raise ConflictError(f"Match {match.slug} is waiting for both teams")

        state = apply_veto_action(tournament.format, list(tournament.maps or []), match.veto_state,
                                  team, action, map_name, side)
        match.veto_state = state
        if is_veto_complete(tournament.format, state):
            match.veto_completed = True
            match.maps = final_map_list(tournament.format, list(tournament.maps or []), state)
            logger.info(f"Veto for match {match.slug} completed: {match.maps}")
            self.try_prepare(match)
        db.session.commit()
        return match

    # -- server lifecycle --

    def _push_config(self, match: Match):
        server = self.servers.get_server(match.server_id)
        commands = []
        if self.settings is not None:
            webhook_url = self.settings.get_webhook_url()
            if webhook_url:
                commands += matchzy_webhook_commands(webhook_url, self.webhook_token)
            commands += matchzy_settings_commands(
                self.settings.get_chat_prefix(),
                self.settings.get_admin_chat_prefix(),
                self.settings.is_knife_enabled_by_default(),
            )
        if commands:
            self.channel.send_commands(server, commands)
        self.channel.load_match(server, build_match_config(match, match.tournament, match.expected_players))

    def end_on_server(self, match: Match):
        """Stop whatever MatchZy is running for this match. Raises ExternalServiceError."""
        server = self.servers.get_server(match.server_id)
        self.channel.send_commands(server, [END_MATCH_COMMAND])
        logger.info(f"Sent {END_MATCH_COMMAND} to server {server.id} for match {match.slug}")

    def load_match(self, match: Match, server_id: str = None) -> Match:
        if match.status != MatchState.READY.value:
            raise ConflictError(f"Match {match.slug} is {match.status}, not ready")

        if server_id:
            self.servers.assign(server_id, match)
        else:
            for server in self.servers.free_servers():
                if self.servers.try_assign(server.id, match):
                    break
            else:
                raise ConflictError('No free server available')

        try:
            self._push_config(match)
        except ExternalServiceError:
            db.session.rollback()
            logger.warning(f"Loading match {match.slug} failed; match stays ready")
            raise

        self._transition(match, 'load')
        db.session.commit()
        self.publisher.publish(server_event(match.tournament_id, match.server_id, match.slug, assigned=True))
        return match

    def allocate_ready_matches(self, tournament: Tournament) -> List[Match]:
        loaded = []
        skipped = set()
        for match in self.list_matches(tournament, status=MatchState.READY.value):
            free = [s for s in self.servers.free_servers() if s.id not in skipped]
            if not free:
                break
            try:
                loaded.append(self.load_match(match, free[0].id))
            except ExternalServiceError as e:
                logger.warning(f"Server {free[0].id} failed to load {match.slug}: {e.message}")
                skipped.add(free[0].id)
        return loaded

    # -- live reports --

    def player_connected(self, match: Match, steam_id: str, connected: bool = True):
        """Track who is on the server; a repeated connect for the same player counts once."""
        present = set(match.connected_steam_ids or [])
        if connected:
            present.add(str(steam_id))
        else:
            present.discard(str(steam_id))
        match.connected_steam_ids = sorted(present)
        match.connected_players = min(match.expected_players, len(present))
        self._maybe_go_live(match)

    def warmup_ended(self, match: Match):
        match.warmup_ended = True
        self._maybe_go_live(match)

    def _maybe_go_live(self, match: Match):
        if match.status != MatchState.LOADED.value or not match.warmup_ended:
            return
        if match.connected_players >= match.expected_players:
            self._transition(match, 'go_live')

    def record_round_score(self, match: Match, team1_score: int, team2_score: int):
        match.team1_score = team1_score
        match.team2_score = team2_score

    def record_map_result(self, match: Match, map_number: int, team1_score: int, team2_score: int,
                          map_name: str = None) -> MatchMapResult:
        result = next((r for r in match.map_results if r.map_number == map_number), None)
        if result is None:
            result = MatchMapResult(map_number=map_number)
            match.map_results.append(result)
        result.map_name = map_name or result.map_name or (
            match.maps[map_number] if match.maps and map_number < len(match.maps) else None
        )
        result.team1_score = team1_score
        result.team2_score = team2_score
        if team1_score > team2_score:
            result.winner_slot = 1
        elif team2_score > team1_score:
            result.winner_slot = 2
        else:
            result.winner_slot = None
        match.team1_score = 0
        match.team2_score = 0
        return result

    # -- completion --

    def _finish(self, match: Match, action: str, winner_id: Optional[str], is_draw: bool):
        match.winner_id = winner_id
        match.is_draw = is_draw and winner_id is None
        match.forced = action == 'force_end'
        self._transition(match, action)

        history = self.ratings.apply_match(match)
        if match.winner_id:
            self._propagate(match)

        db.session.commit()
        self.publisher.publish(match_completed_event(
            match.tournament_id, match.slug, match.winner_id, match.round, forced=match.forced
        ))
        if history:
            self.publisher.publish(tournament_event(
                EventType.RATINGS_UPDATED, match.tournament_id, match=match.slug, players=len(history),
            ))
        if self.on_completed is not None:
            self.on_completed(match)

    def complete_match(self, match: Match) -> Match:
        winner_id, is_draw = determine_winner(match)
        if winner_id is None and not is_draw:
            is_draw = True
        self._finish(match, 'complete', winner_id, is_draw)
        logger.info(f"Match {match.slug} completed: winner={match.winner_id} draw={match.is_draw}")
        return match

    def _check_team(self, match: Match, team_id: str):
        if team_id not in match.team_ids():
            raise ValidationError(f"Team '{team_id}' is not playing in match {match.slug}")

    def force_end(self, match: Match, winner_id: str = None) -> Match:
        """Administrative completion from any non-terminal state."""
        if match.status == MatchState.COMPLETED.value:
            raise ConflictError(f"Match {match.slug} is already completed")
        if winner_id is not None:
            self._check_team(match, winner_id)
            is_draw = False
        else:
            winner_id, is_draw = determine_winner(match)
        if match.server_id is not None:
            try:
                self.end_on_server(match)
            except ExternalServiceError as e:
                logger.warning(f"Could not stop match {match.slug} on server {match.server_id}: {e.message}")
        self._finish(match, 'force_end', winner_id, is_draw)
        logger.warning(f"Match {match.slug} force-ended (winner={match.winner_id})")
        return match

    @staticmethod
    def _clear_progress(match: Match):
        match.connected_players = 0
        match.connected_steam_ids = []
        match.warmup_ended = False
        match.team1_score = 0
        match.team2_score = 0
        match.team1_series_score = None
        match.team2_series_score = None
        match.map_results.clear()
        PlayerMatchStats.query.filter_by(match_id=match.id).delete()

    def restart_match(self, match: Match, reload: bool = True) -> Match:
        """
        Stop the match on its server and play it again from the start.

        The server is told to end the match first; if it cannot be reached
        nothing changes. With ``reload`` the config is pushed to the same
        server right away, otherwise the match waits in ready for allocation.
        """
        if not MatchStateMachine.from_state_string(match.status).holds_server or match.server_id is None:
            raise ConflictError(f"Match {match.slug} is {match.status}; only loaded or live matches restart")

        server_id = match.server_id
        self.end_on_server(match)

        self._transition(match, 'restart')
        self._clear_progress(match)
        db.session.commit()
        logger.info(f"Match {match.slug} restarted")

        if reload:
            try:
                self.load_match(match, server_id)
            except (ConflictError, ExternalServiceError) as e:
                logger.warning(f"Match {match.slug} restarted but not reloaded: {e.message}")
        return match

    def reassign_server(self, match: Match, server_id: str) -> Match:
        """Move a loaded or live match to another server; players reconnect there."""
        if not MatchStateMachine.from_state_string(match.status).holds_server:
            raise ConflictError(f"Match {match.slug} is {match.status}; only loaded or live matches move")
        if server_id == match.server_id:
            raise ValidationError(f"Match {match.slug} is already on server '{server_id}'")

        old_server = self.servers.get_server(match.server_id)
        self.servers.assign(server_id, match)
        try:
            self._push_config(match)
        except ExternalServiceError:
            db.session.rollback()
            logger.warning(f"Moving match {match.slug} to {server_id} failed; it stays on {old_server.id}")
            raise

        self.servers.release_server(old_server.id, match)
        match.connected_players = 0
        match.connected_steam_ids = []
        match.warmup_ended = False
        self._transition(match, 'reassign_server')
        db.session.commit()

        try:
            self.channel.send_commands(old_server, [END_MATCH_COMMAND])
        except ExternalServiceError as e:
            logger.warning(f"Could not stop match {match.slug} on old server {old_server.id}: {e.message}")
        self.publisher.publish(server_event(match.tournament_id, old_server.id, match.slug, assigned=False))
        self.publisher.publish(server_event(match.tournament_id, server_id, match.slug, assigned=True))
        logger.info(f"Match {match.slug} moved from server {old_server.id} to {server_id}")
        return match

    def set_winner(self, match: Match, winner_id: str) -> Match:
        """Admin override of a completed match's winner."""
        if match.status != MatchState.COMPLETED.value:
            raise ConflictError(f"Match {match.slug} is not completed")
        self._check_team(match, winner_id)
        for linked_id in (match.next_match_id, match.loser_next_match_id):
            linked = db.session.get(Match, linked_id) if linked_id else None
            if linked is not None and linked.status not in (MatchState.PENDING.value, MatchState.READY.value):
                raise ConflictError(f"Match {linked.slug} has already started; winner cannot change")

        previous = match.winner_id
        match.winner_id = winner_id
        match.is_draw = False
        self.ratings.apply_match(match)
        self._propagate(match)
        db.session.commit()
        logger.warning(f"Match {match.slug} winner overridden: {previous} -> {winner_id}")
        self.publisher.publish(tournament_event(
            EventType.MATCH_WINNER_OVERRIDDEN, match.tournament_id,
            match=match.slug, previous=previous, winner=winner_id,
        ))
        if self.on_completed is not None:
            self.on_completed(match)
        return match
