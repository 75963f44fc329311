"""Event models and Redis publishing.

Producers publish JSON payloads on namespaced channels derived from
``EventType``; downstream analytics consumers subscribe to those channels.

Key concepts
- ``EventType`` stable identifiers are versioned (``.v1`` suffix)
- ``EventPublisher`` composes channel names as ``{prefix}:{event_type}``

The goal is to keep event shapes explicit and easy to evolve.
"""

import asyncio
import json
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

import redis.asyncio as redis_async
import structlog

logger = structlog.get_logger("events")


class EventType(Enum):
    """Event types emitted by the retrieval service."""
    RAG_QUERY_LOGGED = "rag.query.logged.v1"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class BaseEvent:
    """Base event class.

    Child events set ``event_type`` as a class attribute so it is part of the
    serialized payload without being a constructor argument.
    """
    event_type: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        payload = asdict(self)
        payload["event_type"] = self.event_type
        return payload

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict())


@dataclass
class QueryEvent(BaseEvent):
    """One retrieval request, recorded for offline analysis.

    ``result_chunk_ids`` and ``scores`` are parallel lists in result order.
    Created once per request, written once, never read back by the service.
    """
    event_type: ClassVar[str] = EventType.RAG_QUERY_LOGGED.value

    user_id: str
    query_text: str
    result_chunk_ids: List[str]
    scores: List[float]
    method: str
    latency_ms: float
    community_id: Optional[str] = None
    timestamp: int = field(default_factory=_now_ms)


class EventPublisher:
    """Publishes events to Redis.

    Notes
    - Failures are retried with backoff, then logged and re‑raised.
    - Messages are serialized as JSON to keep consumers language‑agnostic.
    """

    def __init__(
        self,
        redis_url: str,
        channel_prefix: str = "rag_events",
        max_retries: int = 3,
        base_delay: float = 0.2,
    ):
        self.redis_client = redis_async.from_url(redis_url)
        self.channel_prefix = channel_prefix
        self.max_retries = max_retries
        self.base_delay = base_delay

    def channel_for(self, event: BaseEvent) -> str:
        return f"{self.channel_prefix}:{event.event_type}"

    async def publish(self, event: BaseEvent) -> None:
        """Publish an event with retry logic.

        The channel is derived from the event's type to allow subscribers to
        filter efficiently without payload inspection.
        """
        channel = self.channel_for(event)
        message = event.to_json()

        for attempt in range(self.max_retries):
            try:
                await self.redis_client.publish(channel, message)
                logger.debug("Event published", event_type=event.event_type, channel=channel)
                return
            except Exception as e:
                if attempt == self.max_retries - 1:
                    logger.error(
                        "Failed to publish event after all retries",
                        event_type=event.event_type,
                        error=str(e)
                    )
                    raise

                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    "Event publish failed, retrying",
                    event_type=event.event_type,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=str(e)
                )
                await asyncio.sleep(delay)

    async def close(self) -> None:
        """Close the Redis client used by the publisher."""
        try:
            await self.redis_client.aclose()
        except Exception as e:
            logger.warning("Error closing redis client", error=str(e))


def create_event_publisher(redis_url: str) -> EventPublisher:
    """Create an event publisher."""
    return EventPublisher(redis_url)
