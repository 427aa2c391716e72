"""
FastAPI application entrypoint
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import cancellation as cancellation_routes
from api.routes import refunds as refund_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from infrastructure.database import create_tables, engine


configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Development creates tables on startup; other environments run migrations out of band
    if settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Ledger tables created (development)")
    else:
        logger.info("database_migrations_required", message="Tables are not auto-created outside DEBUG")

    yield

    gateway = getattr(app.state, "processor_gateway", None)
    close = getattr(gateway, "aclose", None)
    if callable(close):
        await close()
        logger.info("processor_gateway_closed", provider=getattr(gateway, "provider", None))
    await engine.dispose()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="Refunds and financial ledger for cancelled events",
)

# Middleware runs bottom-up: RequestID first so the logger sees request_id
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(refund_routes.router, prefix="/api/v1")
app.include_router(cancellation_routes.router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "redoc": "/redoc",
        },
    )


@app.get("/health", tags=["Health"])
async def health_check():
    return success_response(data={"status": "healthy"})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
