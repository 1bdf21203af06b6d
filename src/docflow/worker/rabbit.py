from typing import Any

from src.docflow.domain.enums import AckAction
from src.docflow.domain.value_objects import Ack, Delivery


def delivery_from_message(message: Any) -> Delivery:
    """RabbitMessage (FastStream) -> Delivery."""
    raw = getattr(message, "raw_message", None)
    redelivered = bool(getattr(raw, "redelivered", False))
    headers = getattr(message, "headers", None) or {}
    message_id = message.message_id or f"rmq-{getattr(raw, 'delivery_tag', '')}"
    return Delivery(
        message_id=str(message_id),
        body=message.body,
        redelivered=redelivered,
        attributes={str(k): str(v) for k, v in headers.items()},
    )


async def apply_ack(message: Any, ack: Ack) -> None:
    if ack.action == AckAction.ACK:
        await message.ack()
    else:
        await message.nack(requeue=ack.requeue)
