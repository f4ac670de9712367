from enum import Enum
from typing import Optional, Callable, List
from dataclasses import dataclass


class MatchState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    LOADED = "loaded"
    LIVE = "live"
    COMPLETED = "completed"


class TournamentState(str, Enum):
    SETUP = "setup"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TransitionError(Exception):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


@dataclass
class Transition:
    from_state: Enum
    to_state: Enum
    action: str
    guard: Optional[Callable] = None
    guard_reason: str = None


def teams_assigned_guard(context: dict) -> bool:
    return bool(context.get("team1_id")) and bool(context.get("team2_id"))


def match_ready_guard(context: dict) -> bool:
    if not teams_assigned_guard(context):
        return False
    if context.get("veto_required") and not context.get("veto_completed"):
        return False
    return context.get("round", 0) <= context.get("current_round", 0)


def server_assigned_guard(context: dict) -> bool:
    return context.get("server_id") is not None


def players_connected_guard(context: dict) -> bool:
    return context.get("connected_players", 0) >= context.get("expected_players", 10)


class _StateMachine:
    """Table-driven state machine shared by matches and tournaments."""

    STATE_ENUM = None
    INITIAL_STATE = None
    TRANSITIONS: List[Transition] = []

    def __init__(self, initial_state=None):
        self._state = initial_state or self.INITIAL_STATE

    @property
    def state(self):
        return self._state

    def can_transition(self, action: str) -> bool:
        return self._find(action) is not None

    def _find(self, action: str) -> Optional[Transition]:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                return t
        return None

    def transition(self, action: str, guard_context: dict = None):
        t = self._find(action)
        if t is None:
            raise TransitionError(
                self._state.value,
                "unknown",
                f"No valid transition for action '{action}' from state '{self._state.value}'"
            )

        if t.guard and not t.guard(guard_context or {}):
            raise TransitionError(
                self._state.value,
                t.to_state.value,
                t.guard_reason or f"Guard condition failed for action '{action}'"
            )

        self._state = t.to_state
        return self._state

    @classmethod
    def from_state_string(cls, state_str: str):
        try:
            state = cls.STATE_ENUM(state_str)
        except ValueError:
            state = cls.INITIAL_STATE
        return cls(initial_state=state)


_NON_TERMINAL = [MatchState.PENDING, MatchState.READY, MatchState.LOADED, MatchState.LIVE]


class MatchStateMachine(_StateMachine):
    STATE_ENUM = MatchState
    INITIAL_STATE = MatchState.PENDING

    TRANSITIONS = [
        Transition(MatchState.PENDING, MatchState.READY, "prepare",
                   match_ready_guard, "Match is not ready: teams, veto or round pending"),
        Transition(MatchState.READY, MatchState.LOADED, "load",
                   server_assigned_guard, "Match has no server assigned"),
        Transition(MatchState.LOADED, MatchState.LIVE, "go_live",
                   players_connected_guard, "Not enough players connected to go live"),
        Transition(MatchState.LIVE, MatchState.COMPLETED, "complete"),
        # A series can finish before the going-live report arrives
        Transition(MatchState.LOADED, MatchState.COMPLETED, "complete"),
        Transition(MatchState.LOADED, MatchState.READY, "restart"),
        Transition(MatchState.LIVE, MatchState.READY, "restart"),
        Transition(MatchState.LOADED, MatchState.LOADED, "reassign_server"),
        Transition(MatchState.LIVE, MatchState.LOADED, "reassign_server"),
        Transition(MatchState.PENDING, MatchState.COMPLETED, "walkover"),
        Transition(MatchState.READY, MatchState.COMPLETED, "walkover"),
    ] + [Transition(s, MatchState.COMPLETED, "force_end") for s in _NON_TERMINAL]

    @property
    def holds_server(self) -> bool:
        return self._state in (MatchState.LOADED, MatchState.LIVE)


class TournamentStateMachine(_StateMachine):
    STATE_ENUM = TournamentState
    INITIAL_STATE = TournamentState.SETUP

    TRANSITIONS = [
        Transition(TournamentState.SETUP, TournamentState.SETUP, "edit"),
        Transition(TournamentState.SETUP, TournamentState.IN_PROGRESS, "start"),
        Transition(TournamentState.IN_PROGRESS, TournamentState.IN_PROGRESS, "advance"),
        Transition(TournamentState.IN_PROGRESS, TournamentState.COMPLETED, "complete"),
        Transition(TournamentState.IN_PROGRESS, TournamentState.COMPLETED, "end"),
    ]

    ALLOWED_ACTIONS = {
        TournamentState.SETUP: ["edit", "delete", "start", "register_player"],
        TournamentState.IN_PROGRESS: [
            "rename", "advance", "end", "delete", "load_match", "restart_match",
            "force_end_match", "set_winner", "reassign_server",
        ],
        TournamentState.COMPLETED: ["view", "rename", "delete", "set_winner"],
    }

    FORM_ACCESS = {
        TournamentState.SETUP: "config",
        TournamentState.IN_PROGRESS: "results",
        TournamentState.COMPLETED: "readonly",
    }

    @property
    def form_access(self) -> str:
        return self.FORM_ACCESS.get(self._state, "readonly")

    @property
    def allowed_actions(self) -> List[str]:
        return self.ALLOWED_ACTIONS.get(self._state, [])
