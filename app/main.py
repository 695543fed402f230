"""
API do Compliance Gate.

    uvicorn app.main:app
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.error_handlers import register_exception_handlers
from app.api.routes import compliance, health, jobs
from app.core.config import settings
from app.core.logging import setup_logging
from app.core.tasks import aguardar_pendentes

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"[main] {settings.APP_NAME} subindo ({settings.ENVIRONMENT})")
    if settings.EMERGENCY_STOP_FORCED:
        logger.critical("[main] EMERGENCY_STOP_FORCED: todo outbound será bloqueado")

    yield

    # Alertas de lockdown/emergency ainda em voo
    canceladas = await aguardar_pendentes()
    logger.info(f"[main] {settings.APP_NAME} encerrado ({canceladas} alertas cancelados)")


def create_app() -> FastAPI:
    api = FastAPI(
        title=settings.APP_NAME,
        description="Gate de compliance para outbound (SMS, email, voz) e ações automatizadas",
        version="0.1.0",
        lifespan=lifespan,
    )
    api.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )
    register_exception_handlers(api)

    api.include_router(health.router, tags=["Health"])
    api.include_router(compliance.router)
    api.include_router(jobs.router)

    @api.get("/")
    async def root():
        return {"app": settings.APP_NAME, "status": "running", "docs": "/docs"}

    return api


app = create_app()
