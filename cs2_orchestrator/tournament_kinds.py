"""
Tournament kinds.

Each kind knows how to lay out its matches, when it is finished and how to
name its rounds. The tournament type is dispatched to a kind exactly once
through ``get_kind``.
"""
import logging
from collections import Counter
from typing import Dict, List

from . import bracket
from .errors import ValidationError, ConflictError
from .models import db, Match, Team, TeamMember, Player, RoundBye
from .shuffle import RatedPlayer, select_participants, balance_teams

logger = logging.getLogger(__name__)

TOURNAMENT_TYPES = ['single_elimination', 'double_elimination', 'round_robin', 'swiss', 'shuffle']


def round_complete(matches: List[Match]) -> bool:
    return bool(matches) and all(m.status == 'completed' for m in matches)


class TournamentKind:
    uses_teams = True

    def __init__(self, tournament, expected_players: int = 10):
        self.tournament = tournament
        self.expected_players = expected_players

    # -- construction helpers --

    def _new_match(self, slug: str, round_num: int, number: int, section: str = 'main',
                   section_round: int = None, team1_id=None, team2_id=None) -> Match:
        t = self.tournament
        match = Match(
            slug=slug,
            tournament_id=t.id,
            round=round_num,
            match_number=number,
            bracket_section=section,
            section_round=section_round,
            team1_id=team1_id,
            team2_id=team2_id,
            status='pending',
            maps=[] if t.veto_enabled else list(t.maps or []),
            veto_completed=not t.veto_enabled,
            expected_players=self.expected_players,
        )
        db.session.add(match)
        return match

    def _persist(self, skeleton: List[bracket.BracketMatch]) -> List[Match]:
        by_slug: Dict[str, Match] = {}
        for b in skeleton:
            by_slug[b.slug] = self._new_match(b.slug, b.round, b.match_number, b.section,
                                              b.section_round, b.team1_id, b.team2_id)
        db.session.flush()
        for b in skeleton:
            match = by_slug[b.slug]
            if b.next_slug:
                match.next_match_id = by_slug[b.next_slug].id
                match.next_match_slot = b.next_slot
            if b.loser_next_slug:
                match.loser_next_match_id = by_slug[b.loser_next_slug].id
                match.loser_next_match_slot = b.loser_next_slot
        return list(by_slug.values())

    # -- contract --

    def minimum_participants(self) -> int:
        return 2

    def generate_initial(self) -> List[Match]:
        raise NotImplementedError

    def generate_round(self, round_num: int, matches: List[Match]) -> List[Match]:
        """Matches for round_num; kinds with a pre-built schedule just return them."""
        return [m for m in matches if m.round == round_num]

    def total_rounds(self, matches: List[Match]) -> int:
        return max((m.round for m in matches), default=0)

    def is_complete(self, matches: List[Match]) -> bool:
        return round_complete(matches)

    def validate_round_results(self, round_matches: List[Match]):
        pass

    def describe_round(self, round_num: int, total_rounds: int) -> str:
        return f"Round {round_num}"

    def describe_match(self, match: Match, total_rounds: int) -> str:
        return self.describe_round(match.round, total_rounds)


class Elimination(TournamentKind):
    def generate_initial(self) -> List[Match]:
        team_ids = list(self.tournament.team_ids or [])
        if self.tournament.type == 'double_elimination':
            skeleton = bracket.double_elimination(team_ids)
        else:
            skeleton = bracket.single_elimination(team_ids)
        return self._persist(skeleton)

    def is_complete(self, matches: List[Match]) -> bool:
        finals = [m for m in matches if m.next_match_id is None]
        return bool(finals) and all(m.status == 'completed' and m.winner_id for m in finals)

    def validate_round_results(self, round_matches: List[Match]):
        for m in round_matches:
            if m.team1_id and m.team2_id and m.winner_id is None:
                raise ConflictError(f"Match {m.slug} has no winner; set a winner before advancing")

    def describe_round(self, round_num: int, total_rounds: int) -> str:
        if self.tournament.type == 'double_elimination':
            if round_num == total_rounds:
                return "Grand Final"
            return f"Round {round_num}"
        remaining = total_rounds - round_num
        if remaining == 0:
            return "Final"
        if remaining == 1:
            return "Semifinals"
        if remaining == 2:
            return "Quarterfinals"
        return f"Round {round_num}"

    def describe_match(self, match: Match, total_rounds: int) -> str:
        # Double elimination rounds interleave both brackets
        if match.bracket_section == 'winners':
            return f"Upper Round {match.section_round}"
        if match.bracket_section == 'losers':
            return f"Lower Round {match.section_round}"
        if match.bracket_section == 'grand_final':
            return "Grand Final"
        return self.describe_round(match.round, total_rounds)


class RoundRobin(TournamentKind):
    def generate_initial(self) -> List[Match]:
        return self._persist(bracket.round_robin(list(self.tournament.team_ids or [])))

    def total_rounds(self, matches: List[Match]) -> int:
        return bracket.round_robin_rounds(len(self.tournament.team_ids or []))


class Swiss(TournamentKind):
    def total_rounds(self, matches: List[Match]) -> int:
        return bracket.swiss_rounds(len(self.tournament.team_ids or []))

    def standings(self, matches: List[Match]) -> List[dict]:
        team_ids = list(self.tournament.team_ids or [])
        table = {tid: {'teamId': tid, 'wins': 0, 'losses': 0, 'draws': 0, 'seed': i}
                 for i, tid in enumerate(team_ids)}
        for m in matches:
            if m.status != 'completed':
                continue
            if m.winner_id in table:
                table[m.winner_id]['wins'] += 1
                loser = m.loser_id()
                if loser in table:
                    table[loser]['losses'] += 1
            elif m.is_draw:
                for tid in m.team_ids():
                    if tid in table:
                        table[tid]['draws'] += 1
        return sorted(table.values(), key=lambda s: (-s['wins'], -s['draws'], s['losses'], s['seed']))

    def _pair(self, round_num: int, matches: List[Match]) -> List[Match]:
        ranked = [s['teamId'] for s in self.standings(matches)]
        played = {frozenset(m.team_ids()) for m in matches if m.team1_id and m.team2_id}
        had_bye = {m.team1_id for m in matches if m.is_walkover and m.team2_id is None}
        pairs, bye = bracket.swiss_pairings(ranked, played, had_bye)

        created = []
        for number, (t1, t2) in enumerate(pairs, start=1):
            created.append(self._new_match(f"r{round_num}m{number}", round_num, number,
                                           'swiss', round_num, t1, t2))
        if bye is not None:
            number = len(pairs) + 1
            created.append(self._new_match(f"r{round_num}m{number}", round_num, number,
                                           'swiss', round_num, bye, None))
        return created

    def generate_initial(self) -> List[Match]:
        return self._pair(1, [])

    def generate_round(self, round_num: int, matches: List[Match]) -> List[Match]:
        existing = [m for m in matches if m.round == round_num]
        if existing:
            return existing
        return self._pair(round_num, matches)

    def is_complete(self, matches: List[Match]) -> bool:
        total = self.total_rounds(matches)
        return round_complete(matches) and max(m.round for m in matches) >= total


class Shuffle(TournamentKind):
    """No fixed bracket: balanced teams are rebuilt from live ratings every round."""

    uses_teams = False

    @property
    def team_size(self) -> int:
        return self.tournament.team_size or 5

    def minimum_participants(self) -> int:
        return self.team_size * 2

    def total_rounds(self, matches: List[Match]) -> int:
        return len(self.tournament.maps or [])

    def is_complete(self, matches: List[Match]) -> bool:
        total = self.total_rounds(matches)
        final_round = [m for m in matches if m.round == total]
        return total > 0 and round_complete(final_round)

    def describe_round(self, round_num: int, total_rounds: int) -> str:
        maps = self.tournament.maps or []
        if 1 <= round_num <= len(maps):
            return f"Round {round_num} ({maps[round_num - 1]})"
        return f"Round {round_num}"

    def registered_players(self) -> List[RatedPlayer]:
        players = []
        for reg in self.tournament.registrations:
            player = reg.player or db.session.get(Player, reg.player_id)
            if player is not None:
                players.append(RatedPlayer(player.id, player.name, player.current_elo))
        return players

    def _played_counts(self) -> Counter:
        rows = (
            db.session.query(TeamMember.steam_id)
            .join(Team, Team.id == TeamMember.team_id)
            .filter(Team.tournament_id == self.tournament.id)
            .all()
        )
        return Counter(steam_id for (steam_id,) in rows)

    def generate_initial(self) -> List[Match]:
        return self.generate_round(1, [])

    def generate_round(self, round_num: int, matches: List[Match]) -> List[Match]:
        t = self.tournament
        if round_num > len(t.maps or []):
            raise ValidationError(f"Round {round_num} is beyond the map sequence ({len(t.maps or [])} rounds)")

        players = self.registered_players()
        required = self.minimum_participants()
        if len(players) < required:
            raise ValidationError(
                f"Not enough players registered: {len(players)}. Shuffle tournaments require "
                f"at least {required} players ({self.team_size} per team, 2 teams)."
            )

        sat_out = {
            b.player_id for b in RoundBye.query.filter_by(tournament_id=t.id, round_num=round_num - 1)
        }
        playing, sitting = select_participants(players, self.team_size, sat_out, self._played_counts())
        teams = balance_teams(playing, self.team_size)

        created = []
        for number, start in enumerate(range(0, len(teams), 2), start=1):
            slug = f"shuffle-r{round_num}-m{number}"
            team_rows = [self._create_team(f"{slug}-team{i + 1}", roster)
                         for i, roster in enumerate(teams[start:start + 2])]
            match = self._new_match(
                slug, round_num, number, 'shuffle', round_num,
                team_rows[0].id, team_rows[1].id if len(team_rows) > 1 else None,
            )
            match.maps = [t.maps[round_num - 1]]
            match.veto_completed = True
            match.expected_players = self.team_size * 2
            created.append(match)

        for p in sitting:
            db.session.add(RoundBye(tournament_id=t.id, round_num=round_num, player_id=p.player_id))

        logger.info(
            f"Shuffle round {round_num}: {len(teams)} teams, {len(created)} matches, "
            f"{len(sitting)} sitting out"
        )
        return created

    def _create_team(self, team_id: str, roster: List[RatedPlayer]) -> Team:
        team = Team(id=team_id, name=f"Team {roster[0].name}", tournament_id=self.tournament.id)
        for position, p in enumerate(roster):
            team.members.append(TeamMember(position=position, steam_id=p.player_id, name=p.name))
        db.session.add(team)
        return team


KINDS = {
    'single_elimination': Elimination,
    'double_elimination': Elimination,
    'round_robin': RoundRobin,
    'swiss': Swiss,
    'shuffle': Shuffle,
}


def get_kind(tournament, expected_players: int = 10) -> TournamentKind:
    try:
        kind_cls = KINDS[tournament.type]
    except KeyError:
        raise ValidationError(f"Unknown tournament type: {tournament.type}")
    return kind_cls(tournament, expected_players=expected_players)
