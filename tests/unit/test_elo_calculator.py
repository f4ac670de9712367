"""
Unit tests for EloCalculator class.
Tests: sigma_for, from_elo/display_elo mapping, ranks_for, rate_teams
"""
import pytest
from cs2_orchestrator.elo_calculator import (
    EloCalculator, WIN, DRAW, LOSS, DEFAULT_SIGMA, MIN_SIGMA, round_half_up, sigma_for,
)


class TestSigmaFor:
    """Tests for the entered-rating uncertainty."""

    def test_new_player_default(self):
        assert sigma_for(0) == pytest.approx(DEFAULT_SIGMA)
        assert sigma_for(None) == pytest.approx(DEFAULT_SIGMA)

    def test_shrinks_with_matches(self):
        assert sigma_for(10) == pytest.approx(DEFAULT_SIGMA - 2.0)

    def test_floor(self):
        """Veterans bottom out at the minimum sigma."""
        assert sigma_for(500) == pytest.approx(MIN_SIGMA)


class TestRoundHalfUp:
    def test_halves_round_up(self):
        assert round_half_up(3250.5) == 3251
        assert round_half_up(2.5) == 3
        assert round_half_up(-2.5) == -2

    def test_plain_values(self):
        assert round_half_up(3250.4) == 3250
        assert round_half_up(3000) == 3000


class TestDisplayMapping:
    """Entered ratings display back unchanged."""

    @pytest.fixture
    def calc(self):
        return EloCalculator()

    @pytest.mark.parametrize('elo', [3000, 1200, 4850])
    def test_round_trip(self, calc, elo):
        assert calc.display_elo(calc.from_elo(elo)) == elo

    def test_experienced_player_tighter(self, calc):
        veteran = calc.from_elo(3000, match_count=40)
        rookie = calc.from_elo(3000)
        assert veteran.sigma < rookie.sigma
        assert calc.display_elo(veteran) == 3000


class TestRanks:
    def test_ranks(self):
        assert EloCalculator.ranks_for(WIN) == [1, 2]
        assert EloCalculator.ranks_for(LOSS) == [2, 1]
        assert EloCalculator.ranks_for(DRAW) == [1, 1]


class TestRateTeams:
    """Tests for rate_teams."""

    @pytest.fixture
    def calc(self):
        return EloCalculator()

    def roster(self, calc, *elos):
        return [calc.from_elo(elo) for elo in elos]

    def test_even_win(self, calc):
        team_a = self.roster(calc, 3000, 3000)
        team_b = self.roster(calc, 3000, 3000)
        new_a, new_b = calc.rate_teams(team_a, team_b, WIN)
        assert len(new_a) == len(new_b) == 2
        assert all(calc.display_elo(r) > 3000 for r in new_a)
        assert all(calc.display_elo(r) < 3000 for r in new_b)

    def test_loss_mirrors_win(self, calc):
        team_a = self.roster(calc, 3000)
        team_b = self.roster(calc, 3000)
        new_a, new_b = calc.rate_teams(team_a, team_b, LOSS)
        assert new_a[0].mu < team_a[0].mu
        assert new_b[0].mu > team_b[0].mu

    def test_sigma_shrinks(self, calc):
        """Every result makes the system more certain."""
        team_a = self.roster(calc, 3000, 2800)
        team_b = self.roster(calc, 3100, 2900)
        new_a, new_b = calc.rate_teams(team_a, team_b, WIN)
        for old, new in zip(team_a + team_b, new_a + new_b):
            assert new.sigma < old.sigma

    def test_even_draw_is_symmetric(self, calc):
        new_a, new_b = calc.rate_teams(self.roster(calc, 3000), self.roster(calc, 3000), DRAW)
        assert abs(calc.display_elo(new_a[0]) - calc.display_elo(new_b[0])) <= 1

    def test_upset_gains_more(self, calc):
        """An underdog win moves mu further than a favourite win."""
        low, high = self.roster(calc, 2600), self.roster(calc, 3400)
        upset, _ = calc.rate_teams(low, high, WIN)
        expected, _ = calc.rate_teams(high, low, WIN)
        assert upset[0].mu - low[0].mu > expected[0].mu - high[0].mu
