"""
FastAPI application factory
"""
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.responses import Response

from agencyflow.config import get_settings
from agencyflow.infrastructure.db.session import check_db_connection
from agencyflow.api.v1 import clients, recurring, reports, tasks

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Log every unhandled exception with its traceback, including sync routes."""

    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            tb_str = traceback.format_exc()
            logger.error(f"\n{'='*60}\nERROR on {request.method} {request.url.path}\n{tb_str}{'='*60}")
            return Response(content=f"Internal Server Error: {exc}", status_code=500)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.SCHEDULER_ENABLED:
        from agencyflow.application.scheduler import start_scheduler
        start_scheduler()
    try:
        yield
    finally:
        if settings.SCHEDULER_ENABLED:
            from agencyflow.application.scheduler import shutdown_scheduler
            shutdown_scheduler()
        from agencyflow.application.notification_dispatcher import get_dispatcher
        get_dispatcher().shutdown()


def create_app() -> FastAPI:
    """
    Application factory - builds and configures the FastAPI app

    Returns:
        Configured FastAPI app
    """
    settings = get_settings()

    app = FastAPI(
        title="AgencyFlow",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    app.add_middleware(ErrorLoggingMiddleware)

    # Middleware
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SECRET_KEY
    )

    # Routers - /tasks/recurring before /tasks/{task_id}
    app.include_router(recurring.router)
    app.include_router(tasks.router)
    app.include_router(reports.router)
    app.include_router(clients.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (checks the database is reachable)"""
        check_db_connection()
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "agencyflow.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
