from enum import Enum
from dataclasses import dataclass
from datetime import datetime
import json


class EventType(str, Enum):
    # Tournament lifecycle
    TOURNAMENT_CREATED = "tournament.created"
    TOURNAMENT_STARTED = "tournament.started"
    TOURNAMENT_COMPLETED = "tournament.completed"
    TOURNAMENT_DELETED = "tournament.deleted"
    TOURNAMENT_RESET = "tournament.reset"

    # Round events
    ROUND_STARTED = "round.started"
    ROUND_COMPLETED = "round.completed"

    # Match events
    MATCH_STATE_CHANGED = "match.state_changed"
    MATCH_COMPLETED = "match.completed"
    MATCH_WINNER_OVERRIDDEN = "match.winner_overridden"

    # Server events
    SERVER_ASSIGNED = "server.assigned"
    SERVER_RELEASED = "server.released"

    # Ratings
    RATINGS_UPDATED = "ratings.updated"


@dataclass
class Event:
    type: EventType
    tournament_id: str
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow().isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        known = {e.value for e in EventType}
        return cls(
            type=EventType(data["type"]) if data["type"] in known else data["type"],
            tournament_id=data["tournament_id"],
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def match_state_event(tournament_id, match_slug: str, from_state: str, to_state: str) -> Event:
    return Event(
        type=EventType.MATCH_STATE_CHANGED,
        tournament_id=str(tournament_id),
        data={
            "match": match_slug,
            "from_state": from_state,
            "to_state": to_state
        }
    )


def match_completed_event(tournament_id, match_slug: str, winner, round_num: int,
                          forced: bool = False) -> Event:
    return Event(
        type=EventType.MATCH_COMPLETED,
        tournament_id=str(tournament_id),
        data={
            "match": match_slug,
            "winner": winner,
            "round": round_num,
            "forced": forced
        }
    )


def round_started_event(tournament_id, round_num: int, matches_count: int) -> Event:
    return Event(
        type=EventType.ROUND_STARTED,
        tournament_id=str(tournament_id),
        data={
            "round": round_num,
            "matches_count": matches_count
        }
    )


def server_event(tournament_id, server_id: str, match_slug: str, assigned: bool) -> Event:
    return Event(
        type=EventType.SERVER_ASSIGNED if assigned else EventType.SERVER_RELEASED,
        tournament_id=str(tournament_id),
        data={
            "server": server_id,
            "match": match_slug
        }
    )


def tournament_event(event_type: EventType, tournament_id, **data) -> Event:
    return Event(type=event_type, tournament_id=str(tournament_id), data=data)
