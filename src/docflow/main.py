from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from src.docflow.api.routers import ingress_router
from src.docflow.core.bootstrap import Pipeline, build_container
from src.docflow.core.logging import setup_logging
from src.docflow.core.settings import Settings


def create_app(pipeline: Optional[Pipeline] = None) -> FastAPI:
    # Определение жизненного цикла
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if pipeline is not None:
            app.state.pipeline = pipeline
            yield
            return

        settings = Settings()
        setup_logging(settings.LOG_LEVEL)
        container = build_container(settings)
        await container.broker.start()
        app.state.pipeline = container.pipeline
        try:
            yield
        finally:
            await container.broker.close()
            await container.aclose()

    app = FastAPI(
        title="docflow",
        version="0.1.0",
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan,
    )
    if pipeline is not None:
        app.state.pipeline = pipeline

    app.include_router(ingress_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
