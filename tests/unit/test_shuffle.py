"""
Unit tests for ELO-balanced team building.
"""
from cs2_orchestrator.shuffle import (
    RatedPlayer, average_variance, balance_teams, select_participants, team_average,
)


def players(ratings):
    return [RatedPlayer(f'p{i}', f'Player {i}', elo) for i, elo in enumerate(ratings)]


class TestSelectParticipants:
    """Tests for select_participants."""

    def test_exact_multiple_everyone_plays(self):
        roster = players([3000] * 10)
        playing, sitting = select_participants(roster, 5, set(), {})
        assert len(playing) == 10
        assert sitting == []

    def test_extra_player_sits_out(self):
        """Eleven players with teams of five: one sits out, by registration order."""
        roster = players([3000] * 11)
        playing, sitting = select_participants(roster, 5, set(), {})
        assert len(playing) == 10
        assert [p.player_id for p in sitting] == ['p10']

    def test_previous_sitter_plays_next(self):
        roster = players([3000] * 11)
        playing, sitting = select_participants(roster, 5, {'p10'}, {})
        assert 'p10' in {p.player_id for p in playing}
        assert len(sitting) == 1

    def test_fewer_matches_preferred(self):
        roster = players([3000] * 11)
        counts = {'p0': 2}
        _, sitting = select_participants(roster, 5, set(), counts)
        assert [p.player_id for p in sitting] == ['p0']


class TestBalanceTeams:
    """Tests for balance_teams."""

    def test_team_sizes(self):
        teams = balance_teams(players(range(2500, 3500, 100)), 5)
        assert len(teams) == 2
        assert all(len(t) == 5 for t in teams)

    def test_every_player_used_once(self):
        roster = players(range(2500, 4000, 100))
        teams = balance_teams(roster, 5)
        ids = [p.player_id for t in teams for p in t]
        assert sorted(ids) == sorted(p.player_id for p in roster)

    def test_balanced_averages(self):
        """Balancing beats a naive top-half versus bottom-half split."""
        roster = players([3500, 3400, 3300, 3200, 3100, 2900, 2800, 2700, 2600, 2500])
        teams = balance_teams(roster, 5)
        naive = [roster[:5], roster[5:]]
        assert average_variance(teams) < average_variance(naive)
        assert abs(team_average(teams[0]) - team_average(teams[1])) <= 100

    def test_not_enough_for_a_team(self):
        assert balance_teams(players([3000] * 4), 5) == []

    def test_team_average_empty(self):
        assert team_average([]) == 0.0
