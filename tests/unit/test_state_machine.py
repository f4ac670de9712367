"""
Unit tests for the match and tournament state machines.
Tests transitions, guards and helper properties.
"""
import pytest
from shared.state_machine import (
    MatchStateMachine,
    MatchState,
    TournamentStateMachine,
    TournamentState,
    TransitionError,
    match_ready_guard,
    players_connected_guard,
)


def ready_context(**overrides):
    context = {
        'team1_id': 'a', 'team2_id': 'b',
        'veto_required': False, 'veto_completed': True,
        'round': 1, 'current_round': 1,
        'server_id': 'srv', 'connected_players': 10, 'expected_players': 10,
    }
    context.update(overrides)
    return context


class TestTransitionError:
    """Tests for TransitionError exception."""

    def test_error_attributes(self):
        """TransitionError should carry both states."""
        error = TransitionError("pending", "live")
        assert error.from_state == "pending"
        assert error.to_state == "live"

    def test_default_reason(self):
        """Default reason should name both states."""
        error = TransitionError("pending", "live")
        assert "pending" in str(error)
        assert "live" in str(error)

    def test_custom_reason(self):
        error = TransitionError("pending", "live", "Custom error message")
        assert str(error) == "Custom error message"


class TestMatchReadyGuard:
    """Tests for match_ready_guard."""

    def test_ready_when_all_conditions_hold(self):
        assert match_ready_guard(ready_context()) is True

    def test_missing_team(self):
        """A missing team blocks readiness."""
        assert match_ready_guard(ready_context(team2_id=None)) is False

    def test_pending_veto(self):
        """A required but unfinished veto blocks readiness."""
        assert match_ready_guard(ready_context(veto_required=True, veto_completed=False)) is False

    def test_future_round(self):
        """Matches of a round not yet reached stay pending."""
        assert match_ready_guard(ready_context(round=2, current_round=1)) is False


class TestPlayersConnectedGuard:
    def test_full_lobby(self):
        assert players_connected_guard({'connected_players': 10, 'expected_players': 10}) is True

    def test_partial_lobby(self):
        assert players_connected_guard({'connected_players': 9, 'expected_players': 10}) is False


class TestMatchStateMachine:
    """Tests for the match lifecycle pending -> ready -> loaded -> live -> completed."""

    def test_initial_state(self):
        assert MatchStateMachine().state == MatchState.PENDING

    def test_happy_path(self):
        """A match walks every state in order."""
        sm = MatchStateMachine()
        context = ready_context()
        assert sm.transition('prepare', context) == MatchState.READY
        assert sm.transition('load', context) == MatchState.LOADED
        assert sm.transition('go_live', context) == MatchState.LIVE
        assert sm.transition('complete', context) == MatchState.COMPLETED

    def test_cannot_skip_to_live(self):
        """pending cannot jump straight to live."""
        sm = MatchStateMachine()
        with pytest.raises(TransitionError):
            sm.transition('go_live', ready_context())

    def test_load_requires_server(self):
        sm = MatchStateMachine(MatchState.READY)
        with pytest.raises(TransitionError) as exc:
            sm.transition('load', ready_context(server_id=None))
        assert 'server' in exc.value.reason
        assert sm.state == MatchState.READY

    def test_go_live_requires_players(self):
        sm = MatchStateMachine(MatchState.LOADED)
        with pytest.raises(TransitionError):
            sm.transition('go_live', ready_context(connected_players=3))

    def test_guard_runs_without_context(self):
        """A guarded transition with no context fails its guard rather than passing."""
        sm = MatchStateMachine()
        with pytest.raises(TransitionError):
            sm.transition('prepare')

    def test_completed_is_terminal(self):
        """No action leaves completed."""
        sm = MatchStateMachine(MatchState.COMPLETED)
        for action in ('prepare', 'load', 'go_live', 'complete', 'restart', 'force_end', 'walkover'):
            assert sm.can_transition(action) is False

    @pytest.mark.parametrize('state', [MatchState.PENDING, MatchState.READY, MatchState.LOADED, MatchState.LIVE])
    def test_force_end_from_any_open_state(self, state):
        sm = MatchStateMachine(state)
        assert sm.transition('force_end') == MatchState.COMPLETED

    def test_restart_returns_to_ready(self):
        sm = MatchStateMachine(MatchState.LIVE)
        assert sm.transition('restart') == MatchState.READY

    def test_reassign_returns_to_loaded(self):
        """A moved match waits for its players on the new server."""
        assert MatchStateMachine(MatchState.LIVE).transition('reassign_server') == MatchState.LOADED
        assert MatchStateMachine(MatchState.LOADED).transition('reassign_server') == MatchState.LOADED
        assert not MatchStateMachine(MatchState.READY).can_transition('reassign_server')

    def test_walkover_only_before_load(self):
        assert MatchStateMachine(MatchState.PENDING).can_transition('walkover')
        assert not MatchStateMachine(MatchState.LIVE).can_transition('walkover')

    def test_holds_server(self):
        """Only loaded and live matches hold a server."""
        assert MatchStateMachine(MatchState.LOADED).holds_server
        assert MatchStateMachine(MatchState.LIVE).holds_server
        assert not MatchStateMachine(MatchState.READY).holds_server
        assert not MatchStateMachine(MatchState.COMPLETED).holds_server

    def test_from_state_string(self):
        assert MatchStateMachine.from_state_string('live').state == MatchState.LIVE

    def test_from_invalid_state_string(self):
        """Unknown strings fall back to the initial state."""
        assert MatchStateMachine.from_state_string('bogus').state == MatchState.PENDING


class TestTournamentStateMachine:
    """Tests for tournament gating helpers."""

    def test_default_initial_state(self):
        assert TournamentStateMachine().state == TournamentState.SETUP

    def test_start_then_end(self):
        sm = TournamentStateMachine()
        sm.transition('start')
        assert sm.state == TournamentState.IN_PROGRESS
        sm.transition('end')
        assert sm.state == TournamentState.COMPLETED

    def test_cannot_start_twice(self):
        sm = TournamentStateMachine(TournamentState.IN_PROGRESS)
        with pytest.raises(TransitionError):
            sm.transition('start')

    def test_form_access(self):
        assert TournamentStateMachine(TournamentState.SETUP).form_access == 'config'
        assert TournamentStateMachine(TournamentState.IN_PROGRESS).form_access == 'results'
        assert TournamentStateMachine(TournamentState.COMPLETED).form_access == 'readonly'

    def test_allowed_actions(self):
        """Structural edits are only offered in setup."""
        assert 'edit' in TournamentStateMachine(TournamentState.SETUP).allowed_actions
        assert 'edit' not in TournamentStateMachine(TournamentState.IN_PROGRESS).allowed_actions
        assert 'force_end_match' in TournamentStateMachine(TournamentState.IN_PROGRESS).allowed_actions
        assert 'advance' not in TournamentStateMachine(TournamentState.COMPLETED).allowed_actions

