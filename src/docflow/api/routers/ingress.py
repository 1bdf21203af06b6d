import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from src.docflow.api.deps import ensure_stage, get_pipeline
from src.docflow.api.schemas import BatchEvent, BatchResponse, InvokeResponse
from src.docflow.core.bootstrap import Pipeline
from src.docflow.domain.enums import Stage
from src.docflow.domain.value_objects import Delivery
from src.docflow.services.consumer import BatchFailed


router = APIRouter(tags=["ingress"])


@router.post("/invoke/{stage}", response_model=InvokeResponse)
async def invoke(
    stage: Stage,
    payload: dict[str, Any] = Body(...),
    pipeline: Pipeline = Depends(get_pipeline),
):
    ensure_stage(pipeline, stage)

    delivery = Delivery(
        message_id=str(payload.get("event_id") or uuid.uuid4().hex),
        body=payload,
    )
    outcome = await pipeline.services[stage].handle(delivery)

    if outcome.success:
        code = status.HTTP_200_OK
    elif outcome.retryable:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    return JSONResponse(status_code=code, content=outcome.to_dict())


@router.post("/batch/{stage}", response_model=BatchResponse)
async def batch(
    stage: Stage,
    event: BatchEvent,
    pipeline: Pipeline = Depends(get_pipeline),
):
    ensure_stage(pipeline, stage)

    deliveries = [
        Delivery(
            message_id=r.messageId,
            body=r.body,
            redelivered=r.redelivered,
            attributes={k: str(v) for k, v in r.attributes.items()},
        )
        for r in event.Records
    ]

    try:
        outcome = await pipeline.batch(stage).process_batch(deliveries)
    except BatchFailed as e:
        # all-or-nothing: транспорт повторит весь батч
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return outcome.to_response()
