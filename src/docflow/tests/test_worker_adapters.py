from types import SimpleNamespace

import pytest

from src.docflow.domain.value_objects import Ack
from src.docflow.worker.rabbit import apply_ack, delivery_from_message


class FakeMessage:
    def __init__(self, body=b"{}", message_id="m1", redelivered=False, headers=None, delivery_tag=7):
        self.body = body
        self.message_id = message_id
        self.headers = headers or {}
        self.raw_message = SimpleNamespace(redelivered=redelivered, delivery_tag=delivery_tag)
        self.acked = False
        self.nacked = None

    async def ack(self):
        self.acked = True

    async def nack(self, requeue: bool = True):
        self.nacked = requeue


def test_delivery_from_message():
    msg = FakeMessage(body=b'{"job_id": 1}', redelivered=True, headers={"x-retry": 1})

    delivery = delivery_from_message(msg)

    assert delivery.message_id == "m1"
    assert delivery.body == b'{"job_id": 1}'
    assert delivery.redelivered is True
    assert delivery.attributes == {"x-retry": "1"}


def test_missing_message_id_falls_back_to_delivery_tag():
    delivery = delivery_from_message(FakeMessage(message_id=None, delivery_tag=99))

    assert delivery.message_id == "rmq-99"
    assert delivery.redelivered is False


@pytest.mark.anyio
@pytest.mark.parametrize(
    "ack, acked, nacked",
    [
        (Ack.acknowledge(), True, None),
        (Ack.negative(requeue=True), False, True),
        (Ack.negative(requeue=False), False, False),
    ],
)
async def test_apply_ack(ack, acked, nacked):
    msg = FakeMessage()

    await apply_ack(msg, ack)

    assert msg.acked is acked
    assert msg.nacked is nacked
