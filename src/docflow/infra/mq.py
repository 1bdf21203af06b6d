import json
import logging
from typing import Any

from faststream.rabbit import RabbitBroker

from src.docflow.domain.errors import PublishError

logger = logging.getLogger(__name__)


def make_broker(url: str, prefetch_count: int = 10) -> RabbitBroker:
    # prefetch (QoS) ограничивает число неподтверждённых сообщений на канал
    return RabbitBroker(url, max_consumers=prefetch_count)


class RabbitPublisher:
    def __init__(self, broker: RabbitBroker):
        self.broker = broker

    async def publish(self, target_queue: str, message: dict[str, Any]) -> None:
        try:
            await self.broker.publish(
                json.dumps(message),
                queue=target_queue,
                persist=True,
                message_id=message.get("event_id"),
                content_type="application/json",
            )
        except Exception as e:
            raise PublishError(f"failed to publish to {target_queue}: {e}") from e
        logger.info("published %s to %s", message.get("event_type"), target_queue)
