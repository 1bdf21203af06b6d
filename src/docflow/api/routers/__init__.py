from src.docflow.api.routers.ingress import router as ingress_router

__all__ = ["ingress_router"]
