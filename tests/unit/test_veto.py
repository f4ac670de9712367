"""
Unit tests for map veto sequencing.
"""
import pytest
from cs2_orchestrator.errors import ValidationError, ConflictError
from cs2_orchestrator.veto import (
    apply_veto_action, final_map_list, get_veto_order, is_veto_complete, new_veto_state, remaining_maps,
)

POOL = ['de_ancient', 'de_anubis', 'de_dust2', 'de_inferno', 'de_mirage', 'de_nuke', 'de_train']


def run_order(series_format):
    """Play the whole veto, always choosing the first remaining map and CT."""
    state = new_veto_state()
    for step in get_veto_order(series_format):
        left = remaining_maps(POOL, state)
        state = apply_veto_action(series_format, POOL, state, step['team'], step['action'],
                                  map_name=left[0], side='ct')
    return state


class TestVetoOrder:
    @pytest.mark.parametrize('series_format, maps', [('bo1', 1), ('bo3', 3), ('bo5', 5)])
    def test_full_veto_yields_series_maps(self, series_format, maps):
        state = run_order(series_format)
        assert is_veto_complete(series_format, state)
        final = final_map_list(series_format, POOL, state)
        assert len(final) == maps
        assert len(set(final)) == maps

    def test_bo1_ends_with_side_pick(self):
        assert get_veto_order('bo1')[-1]['action'] == 'side_pick'

    def test_unknown_format_falls_back_to_bo1(self):
        assert get_veto_order('bo7') == get_veto_order('bo1')


class TestApplyVetoAction:
    """Tests for illegal veto steps."""

    def test_wrong_team(self):
        first = get_veto_order('bo1')[0]
        other = 'team2' if first['team'] == 'team1' else 'team1'
        with pytest.raises(ValidationError):
            apply_veto_action('bo1', POOL, None, other, first['action'], map_name=POOL[0])

    def test_wrong_action(self):
        first = get_veto_order('bo1')[0]
        with pytest.raises(ValidationError):
            apply_veto_action('bo1', POOL, None, first['team'], 'pick', map_name=POOL[0])

    def test_map_already_banned(self):
        order = get_veto_order('bo1')
        state = apply_veto_action('bo1', POOL, None, order[0]['team'], 'ban', map_name=POOL[0])
        with pytest.raises(ValidationError):
            apply_veto_action('bo1', POOL, state, order[1]['team'], order[1]['action'], map_name=POOL[0])

    def test_requires_seven_maps(self):
        with pytest.raises(ValidationError) as exc:
            apply_veto_action('bo1', POOL[:5], None, 'team1', 'ban', map_name=POOL[0])
        assert 'exactly 7 maps' in exc.value.message

    def test_invalid_side(self):
        state = new_veto_state()
        order = get_veto_order('bo1')
        for step in order[:-1]:
            state = apply_veto_action('bo1', POOL, state, step['team'], step['action'],
                                      map_name=remaining_maps(POOL, state)[0])
        with pytest.raises(ValidationError):
            apply_veto_action('bo1', POOL, state, order[-1]['team'], 'side_pick', side='spectator')

    def test_completed_veto_rejects_more(self):
        state = run_order('bo1')
        with pytest.raises(ConflictError):
            apply_veto_action('bo1', POOL, state, 'team1', 'ban', map_name=POOL[0])

    def test_input_state_not_mutated(self):
        state = new_veto_state()
        first = get_veto_order('bo1')[0]
        apply_veto_action('bo1', POOL, state, first['team'], first['action'], map_name=POOL[0])
        assert state['banned'] == []
