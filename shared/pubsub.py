import os
import logging
import redis
from .events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global:announcements"
EVENT_LOG_LIMIT = 1000


class PubSubClient:
    """Publishes orchestrator events to Redis channels and keeps a capped log per tournament."""

    def __init__(self, redis_url: str = None, redis_client: redis.Redis = None):
        self.redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379')
        self.redis = redis_client or redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )

    def publish(self, channel: str, event: Event):
        self.redis.publish(channel, event.to_json())

    def publish_tournament_event(self, tournament_id: str, event: Event):
        channel = f"tournament:{tournament_id}:events"
        self.publish(channel, event)
        self.redis.publish(GLOBAL_CHANNEL, event.to_json())
        self.log_event(tournament_id, event)

    def log_event(self, tournament_id: str, event: Event):
        key = f"tournament:{tournament_id}:event_log"
        self.redis.lpush(key, event.to_json())
        self.redis.ltrim(key, 0, EVENT_LOG_LIMIT - 1)

    def get_recent_events(self, tournament_id: str, count: int = 50) -> list:
        key = f"tournament:{tournament_id}:event_log"
        events_json = self.redis.lrange(key, 0, count - 1)
        return [Event.from_json(e) for e in events_json]

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except redis.exceptions.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False


class EventPublisher:
    """Fire-and-forget wrapper: a Redis outage never rolls back match state."""

    def __init__(self, client: PubSubClient = None):
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def publish(self, event: Event):
        if self.client is None:
            logger.debug(f"Event {event.type} not published (pubsub disabled)")
            return
        try:
            self.client.publish_tournament_event(event.tournament_id, event)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Failed to publish {event.type} for tournament {event.tournament_id}: {e}")

    def recent(self, tournament_id: str, count: int = 50) -> list:
        if self.client is None:
            return []
        try:
            return self.client.get_recent_events(tournament_id, count)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Failed to read event log for tournament {tournament_id}: {e}")
            return []
