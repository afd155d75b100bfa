"""
esports_backend/main.py
FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from esports_backend import __version__
from esports_backend.config.settings import settings
from esports_backend.database import init_db, close_db
from esports_backend.errors import (
    ErrorCode,
    build_error_body,
    engine_error_response,
    internal_error_response,
)
from esports_backend.exceptions import TournamentEngineError
from esports_backend.routes import rounds, tournaments, wallets
from esports_backend.tasks.auto_cancel import start_sweep_task

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    try:
        await init_db()
        logger.info("Database connected successfully")
    except Exception as e:
        logger.error(f"Failed to connect to database: {str(e)}")
        raise

    sweep_task = None
    if settings.FEATURE_AUTO_CANCEL_SWEEP:
        sweep_task = start_sweep_task()
        logger.info("✓ Auto-cancel sweep started")

    yield

    logger.info("Shutting down application...")
    if sweep_task:
        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
    try:
        await close_db()
    except Exception as e:
        logger.error(f"Error closing database connection: {str(e)}")


app = FastAPI(
    title="Institution Esports Tournament API",
    description="Bracket planning, room allocation and prize distribution for institution tournaments",
    version=__version__,
    docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
    lifespan=lifespan
)

# Attach rate limiter to the app
app.state.limiter = tournaments.limiter

origins = [origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(TournamentEngineError)
async def engine_error_handler(request: Request, exc: TournamentEngineError):
    if exc.status_code >= 500:
        return internal_error_response(exc, context=request.url.path)
    logger.warning(f"Engine error on {request.url.path}: {exc.code} - {exc.message}")
    return engine_error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")

    error_details = [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=build_error_body(
            error="Validation Error",
            message="Request body or parameters are invalid",
            code=ErrorCode.VALIDATION_ERROR,
            details={"errors": error_details},
        )
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=build_error_body(
            error="Too Many Requests",
            message=f"Rate limit exceeded: {exc.detail}",
            code=ErrorCode.RATE_LIMITED,
        )
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"HTTP exception on {request.url.path}: {exc.detail}")

    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail)

    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_body(
            error="Error",
            message=str(exc.detail),
            code=ErrorCode.INTERNAL_ERROR if exc.status_code >= 500 else ErrorCode.INVALID_INPUT,
        )
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    return internal_error_response(exc, context=request.url.path)


@app.get("/health", tags=["Health"])
async def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "auto_cancel_sweep": settings.FEATURE_AUTO_CANCEL_SWEEP,
        "version": __version__
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Institution Esports Tournament API",
        "version": __version__,
        "docs": "/docs" if settings.ENVIRONMENT == "development" else None
    }


app.include_router(tournaments.router)
app.include_router(rounds.router)
app.include_router(wallets.router)
