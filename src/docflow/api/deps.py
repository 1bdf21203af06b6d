from fastapi import HTTPException, Request, status

from src.docflow.core.bootstrap import Pipeline
from src.docflow.domain.enums import Stage


def get_pipeline(request: Request) -> Pipeline:
    """
    Pipeline собирается один раз при старте (lifespan) и лежит в app.state.
    """
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Pipeline is not ready")
    return pipeline


def ensure_stage(pipeline: Pipeline, stage: Stage) -> Stage:
    if stage not in pipeline.services:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Stage {stage} is not served here")
    return stage
