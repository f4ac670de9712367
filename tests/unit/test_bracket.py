"""
Unit tests for bracket graph computation.
Tests: seed_order, single_elimination, double_elimination, round_robin, swiss_pairings
"""
from cs2_orchestrator import bracket


def by_slug(matches):
    return {m.slug: m for m in matches}


class TestSeeding:
    def test_next_power_of_two(self):
        assert bracket.next_power_of_two(1) == 1
        assert bracket.next_power_of_two(5) == 8
        assert bracket.next_power_of_two(8) == 8

    def test_seed_order_top_seeds_apart(self):
        """Seed 1 meets the lowest seed and seeds 1 and 2 sit in opposite halves."""
        order = bracket.seed_order(8)
        assert order[:2] == [1, 8]
        assert order.index(2) >= 4


class TestSingleElimination:
    """Tests for single_elimination."""

    def test_four_teams(self):
        """Four teams give two semifinals and a final with empty slots."""
        matches = bracket.single_elimination(['a', 'b', 'c', 'd'])
        assert len(matches) == 3
        final = by_slug(matches)['r2m1']
        assert final.team1_id is None and final.team2_id is None
        assert final.next_slug is None

    def test_winner_links(self):
        matches = by_slug(bracket.single_elimination(['a', 'b', 'c', 'd']))
        assert (matches['r1m1'].next_slug, matches['r1m1'].next_slot) == ('r2m1', 1)
        assert (matches['r1m2'].next_slug, matches['r1m2'].next_slot) == ('r2m1', 2)

    def test_byes_for_odd_field(self):
        """Three teams: the top seed gets an empty first-round slot."""
        matches = bracket.single_elimination(['a', 'b', 'c'])
        first = [m for m in matches if m.round == 1]
        assert sum(1 for m in first if m.team2_id is None or m.team1_id is None) == 1

    def test_too_few_teams(self):
        assert bracket.single_elimination(['a']) == []


class TestDoubleElimination:
    """Tests for double_elimination."""

    def test_four_team_layout(self):
        matches = by_slug(bracket.double_elimination(['a', 'b', 'c', 'd']))
        assert {'r1m1', 'r1m2', 'r2m1', 'lb-r1m1', 'lb-r2m1', 'gf'} == set(matches)

    def test_losers_drop_into_losers_bracket(self):
        matches = by_slug(bracket.double_elimination(['a', 'b', 'c', 'd']))
        assert matches['r1m1'].loser_next_slug == 'lb-r1m1'
        assert matches['r2m1'].loser_next_slug == 'lb-r2m1'
        assert matches['lb-r2m1'].next_slug == 'gf'

    def test_grand_final_is_last_round(self):
        matches = bracket.double_elimination(['a', 'b', 'c', 'd'])
        gf = by_slug(matches)['gf']
        assert gf.round == max(m.round for m in matches)
        assert gf.next_slug is None

    def test_two_teams(self):
        """With two teams the first loser goes straight to the grand final."""
        matches = by_slug(bracket.double_elimination(['a', 'b']))
        assert matches['r1m1'].loser_next_slug == 'gf'
        assert matches['r1m1'].loser_next_slot == 2


class TestRoundRobin:
    """Tests for the circle-method schedule."""

    def test_every_pair_meets_once(self):
        teams = ['a', 'b', 'c', 'd']
        matches = bracket.round_robin(teams)
        pairs = {frozenset((m.team1_id, m.team2_id)) for m in matches}
        assert len(matches) == 6
        assert len(pairs) == 6

    def test_round_count(self):
        assert bracket.round_robin_rounds(4) == 3
        assert bracket.round_robin_rounds(5) == 5

    def test_odd_field_sits_one_out(self):
        """With five teams each round has two matches."""
        matches = bracket.round_robin(['a', 'b', 'c', 'd', 'e'])
        per_round = {}
        for m in matches:
            per_round.setdefault(m.round, []).append(m)
        assert len(per_round) == 5
        assert all(len(ms) == 2 for ms in per_round.values())


class TestSwiss:
    """Tests for swiss_rounds and swiss_pairings."""

    def test_round_count(self):
        assert bracket.swiss_rounds(8) == 3
        assert bracket.swiss_rounds(6) == 3

    def test_pairs_in_standings_order(self):
        pairs, bye = bracket.swiss_pairings(['a', 'b', 'c', 'd'], set(), set())
        assert pairs == [('a', 'b'), ('c', 'd')]
        assert bye is None

    def test_avoids_rematch(self):
        played = {frozenset(('a', 'b'))}
        pairs, _ = bracket.swiss_pairings(['a', 'b', 'c', 'd'], played, set())
        assert ('a', 'b') not in pairs
        assert pairs[0] == ('a', 'c')

    def test_bye_goes_to_lowest_without_one(self):
        pairs, bye = bracket.swiss_pairings(['a', 'b', 'c'], set(), {'c'})
        assert bye == 'b'
        assert pairs == [('a', 'c')]
