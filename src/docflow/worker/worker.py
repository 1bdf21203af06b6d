import logging
import asyncio
from typing import Any

from faststream import FastStream
from faststream.rabbit import RabbitQueue
from faststream.rabbit.annotations import RabbitMessage

from src.docflow.core.settings import Settings
from src.docflow.core.logging import setup_logging
from src.docflow.core.bootstrap import build_container
from src.docflow.worker.rabbit import apply_ack, delivery_from_message

settings = Settings()
setup_logging(settings.LOG_LEVEL)

container = build_container(settings)
broker = container.broker
app = FastStream(broker)

STAGE = settings.WORKER_STAGE
consumer = container.pipeline.single(STAGE)

# ack/nack решает SingleDeliveryConsumer
@broker.subscriber(RabbitQueue(settings.queue_for(STAGE), durable=True), no_ack=True)
async def handle(body: Any, message: RabbitMessage) -> None:
    delivery = delivery_from_message(message)
    logging.info(
        "rabbitmq message %s received (redelivered=%s)",
        delivery.message_id, delivery.redelivered,
    )

    try:
        ack = await consumer.process_one(delivery)
    except Exception:
        logging.exception("message %s: unhandled error", delivery.message_id)
        await message.nack(requeue=not delivery.redelivered)
        return

    await apply_ack(message, ack)
    logging.info("message %s -> %s", delivery.message_id, ack.action)

@app.after_shutdown
async def _close() -> None:
    await container.aclose()

if __name__ == "__main__":
    asyncio.run(app.run())
