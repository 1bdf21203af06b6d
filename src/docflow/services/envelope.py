import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.docflow.domain.errors import InvalidPayload
from src.docflow.domain.value_objects import Delivery, InboundRequest


class InboundEnvelope(BaseModel):
    """
    Тело сообщения стадии. Идентификатор задачи может прийти как
    job_id, download_id или process_id.
    """
    model_config = ConfigDict(extra="ignore")

    event_id: str = ""
    event_type: str = ""
    job_id: int = Field(validation_alias=AliasChoices("job_id", "download_id", "process_id"))
    timestamp: Optional[datetime] = None

    @field_validator("event_id", "event_type", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, v: Any) -> Any:
        if v in (None, "", 0, "0"):
            return None
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            try:
                return datetime.fromtimestamp(v, tz=timezone.utc)
            except (OverflowError, OSError, ValueError) as e:
                # pydantic превращает в ValidationError только ValueError
                raise ValueError(f"invalid epoch timestamp: {v}") from e
        return v

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def to_request(self) -> InboundRequest:
        return InboundRequest(
            event_id=self.event_id,
            event_type=self.event_type,
            job_id=self.job_id,
            timestamp=self.timestamp,
        )


def parse_delivery(delivery: Delivery) -> InboundRequest:
    body = delivery.body
    try:
        if isinstance(body, (bytes, bytearray)):
            body = body.decode("utf-8")
        if isinstance(body, str):
            body = json.loads(body)
        if not isinstance(body, dict):
            raise InvalidPayload(f"message {delivery.message_id}: payload is not an object")
        return InboundEnvelope.model_validate(body).to_request()
    except InvalidPayload:
        raise
    except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        raise InvalidPayload(f"message {delivery.message_id}: {e}") from e
    except Exception as e:
        # элемент батча не должен ронять соседей
        raise InvalidPayload(f"message {delivery.message_id}: unreadable payload: {e!r}") from e


def build_message(event_type: str, **fields: Any) -> dict[str, Any]:
    """Сообщение для следующей стадии, с новым event_id."""
    return {
        "event_id": uuid.uuid4().hex,
        "event_type": str(event_type),
        **fields,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }
