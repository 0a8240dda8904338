import logging
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jornada.api.ops import router as ops_router
from jornada.api.presence import router as presence_router
from jornada.api.webhooks import router as webhooks_router
from jornada.core.config import get_settings
from jornada.core.database import initialize_database
from jornada.core.exceptions import BusinessLogicError, business_exception_to_response, error_body
from jornada.core.logging import setup_logging

settings = get_settings()
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    setup_logging(level=settings.LOG_LEVEL, log_file=settings.LOG_FILE)

    app = FastAPI(
        title=settings.APP_NAME,
        description="""
        ## Jornada - inbound routing and case orchestration

        Multi-tenant core that routes chat webhooks and clock punches into
        journey-driven cases, seeds pendencies, appends timeline events and
        schedules idempotent background jobs.
        """,
        version="1.0.0",
        openapi_tags=[
            {"name": "webhooks", "description": "Inbound chat provider callbacks"},
            {"name": "presence", "description": "Clock punches and day close"},
            {"name": "infra", "description": "Infrastructure and health check endpoints"},
        ],
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS or ["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhooks_router)
    app.include_router(presence_router)
    app.include_router(ops_router)

    @app.get("/health", tags=["infra"])
    async def health():
        return {"status": "ok", "env": settings.ENV}

    @app.exception_handler(BusinessLogicError)
    async def business_exception_handler(request: Request, exc: BusinessLogicError):
        response = business_exception_to_response(exc)
        if response.status_code >= 500:
            logger.error(
                "%s at %s %s: %s", exc.code, request.method, request.url.path, exc.message,
                extra={"details": exc.details},
            )
        else:
            logger.info("Request rejected: %s", exc.code, extra={"path": request.url.path})
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body("invalid_body", jsonable_encoder(exc.errors())),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "Unhandled exception", extra={
                "method": request.method,
                "path": request.url.path,
            }
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("internal_error"),
        )

    @app.on_event("startup")
    async def startup_event():
        if settings.RUN_MIGRATIONS_ON_STARTUP:
            await initialize_database()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("jornada.main:app", host=settings.APP_HOST, port=settings.APP_PORT, reload=True)
