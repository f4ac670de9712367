"""Tournament status, derived on every read from the tournament and its matches."""
from typing import List

from shared.state_machine import TournamentState, TournamentStateMachine
from .tournament_kinds import get_kind


def aggregate_status(tournament, matches: List) -> TournamentState:
    if tournament is None or not matches:
        return TournamentState.SETUP
    if tournament.ended_at is not None:
        return TournamentState.COMPLETED
    if get_kind(tournament).is_complete(matches):
        return TournamentState.COMPLETED
    return TournamentState.IN_PROGRESS


def state_machine_for(tournament, matches: List) -> TournamentStateMachine:
    return TournamentStateMachine(initial_state=aggregate_status(tournament, matches))
