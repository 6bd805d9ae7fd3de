import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import text

from adpilot.config import settings
from adpilot.db.base import engine
from adpilot.routers import agent_runs, campaigns, cron, leads
from adpilot.services.dispatcher import get_agent_dispatcher
from adpilot.services.errors import LaunchError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _app_lifespan(_app: FastAPI) -> AsyncIterator[None]:
    try:
        yield
    finally:
        await get_agent_dispatcher().wait(timeout=settings.AGENT_SHUTDOWN_GRACE_SECONDS)


def create_app() -> FastAPI:
    app = FastAPI(
        title="adpilot API",
        default_response_class=ORJSONResponse,
        lifespan=_app_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted(set(settings.BACKEND_CORS_ORIGINS)),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LaunchError)
    async def launch_error_handler(request: Request, exc: LaunchError) -> ORJSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "Campaign request failed",
            extra={"path": request.url.path, "status": exc.status_code, "step": exc.step, "error": str(exc)},
        )
        return ORJSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health/db")
    def health_db() -> dict[str, str]:
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return {"db": "ok"}
        except Exception as exc:  # pragma: no cover - simple runtime check
            return {"db": f"error: {exc}"}

    app.include_router(campaigns.router)
    app.include_router(leads.router)
    app.include_router(cron.router)
    app.include_router(agent_runs.router)

    return app


app = create_app()
