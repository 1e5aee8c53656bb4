import json
import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError


def cell_channel(cell_id: int) -> str:
    return f"cell:{cell_id}"


class RedisNotifier:
    """Fire-and-forget event sink: publishes cell events on cell:{cell_id}."""

    def __init__(self, redis: Redis):
        self.redis = redis

    async def notify(self, cell_id: int, event: str, **fields) -> None:
        """Publish an event; failures are logged, never raised

        Args:
            cell_id (int): Cell the event belongs to
            event (str): Event name, e.g. "CellCreated"
        """
        payload = json.dumps({"event": event, "cell_id": cell_id, **fields})
        try:
            await self.redis.publish(cell_channel(cell_id), payload)
        except RedisError as e:
            logging.error(f"Failed to publish {event} for cell {cell_id}: {e}")
