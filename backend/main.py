from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import review, scopes, stats, words
from core.config import settings
from core.database import engine, init_models
from core.logging import configure_logging, get_logger
from core.middleware import RequestLoggingMiddleware, SlowRequestMiddleware
from core.errors import register_error_handlers

# Initialize logging before anything else
configure_logging(
    level=settings.LOG_LEVEL,
    json_logs=settings.LOG_JSON,
    log_sql=settings.LOG_SQL,
)

log = get_logger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("startup", message="Leitner API starting up")

    try:
        await init_models(engine)
        log.info("database_connected", message="Database tables initialized")
    except Exception as e:
        log.warning("database_unavailable", error=str(e), message="App starting without database")

    yield

    log.info("shutdown", message="Leitner API shutting down")
    await engine.dispose()
    log.debug("database_disposed", message="Database connections closed")


app = FastAPI(
    title="Leitner API",
    description="Leitner-box spaced repetition for vocabulary with streaks, XP, levels and achievements",
    version=VERSION,
    lifespan=lifespan,
)

register_error_handlers(app)

# Middleware (order matters: last added = first executed)
app.add_middleware(SlowRequestMiddleware, slow_threshold_ms=1000)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(scopes.router, prefix="/api/scopes", tags=["scopes"])
app.include_router(words.router, prefix="/api/words", tags=["words"])
app.include_router(review.router, prefix="/api/review", tags=["review"])
app.include_router(stats.router, prefix="/api/stats", tags=["stats"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": VERSION}


if __name__ == "__main__":
    import uvicorn

    log.info("server_config", host=settings.BACKEND_HOST, port=settings.BACKEND_PORT, debug=settings.APP_DEBUG)
    uvicorn.run(
        "main:app",
        host=settings.BACKEND_HOST,
        port=settings.BACKEND_PORT,
        reload=settings.APP_DEBUG,
        log_config=None,  # structlog owns logging
    )
