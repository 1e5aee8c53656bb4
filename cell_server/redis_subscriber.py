import json
import logging
from typing import AsyncGenerator
from redis.asyncio import Redis

from cell_server.converter import DataConverter
from cell_server.models.dc_models import CellSummaryModel
from cell_server.services.cell_engine import CellEngine
from cell_server.services.notifier import cell_channel

data_converter = DataConverter()


class RedisSubscriber:
    """Redis subscriber class to handle SSE events of one cell."""

    def __init__(self, cell_engine: CellEngine, cell_id: int):
        self.cell_engine: CellEngine = cell_engine
        self.cell_id: int = cell_id

    async def read_summary(self) -> CellSummaryModel:
        cell = await self.cell_engine.read_cell(self.cell_id)
        return data_converter.convert_cell_to_summary(cell)

    async def event_generator(self, redis: Redis) -> AsyncGenerator[str, None]:
        """Event generator to handle SSE events.

        The current summary is sent first, then one summary per published
        cell event until the cell completes.

        Args:
            redis (Redis): Redis connection object.
        """
        channel = cell_channel(self.cell_id)
        pubsub = redis.pubsub()
        await pubsub.subscribe(channel)
        try:
            summary = await self.read_summary()
            yield f"event: cell_update\ndata: {json.dumps(summary.model_dump())}\n\n"
            if summary.is_complete:
                return

            while True:
                msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=None)
                if not msg or msg["type"] != "message":
                    continue
                event = json.loads(msg["data"])
                summary = await self.read_summary()
                payload = json.dumps({"event": event, "cell": summary.model_dump()})
                logging.debug(f"Payload: {payload}")
                yield f"event: cell_update\ndata: {payload}\n\n"
                if event.get("event") == "CellComplete":
                    break
        finally:
            logging.info(f"Unsubscribing from channel {channel}")
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
