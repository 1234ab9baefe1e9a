import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .errors import ConflictError, InternalError, NotFoundError, TaskManagerError, ValidationError
from .logging_setup import setup_logging
from .routers import tasks as tasks_router
from .routers import users as users_router
from .settings import get_settings

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "users", "description": "User registration, profile updates, credentials and user queries."},
    {
        "name": "tasks",
        "description": "Task lifecycle, filtered and searched task queries, and task statistics.",
    },
]

_settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(_settings.log_level, _settings.log_file)
    logger.info("Task Manager %s starting with %s store", __version__, _settings.persistence_backend)
    yield


app = FastAPI(
    title="Task Manager Backend",
    description="Backend API for per-user tasks with lifecycle tracking, queries and statistics.",
    version=__version__,
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

# Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
allow_all = (_settings.cors_allow_origins == ["*"]) or (len(_settings.cors_allow_origins) == 0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else _settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, exc: TaskManagerError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error_response(404, exc)


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error_response(400, exc)


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return _error_response(400, exc)


@app.exception_handler(InternalError)
async def internal_handler(request: Request, exc: InternalError) -> JSONResponse:
    logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
    return _error_response(500, exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Malformed requests are reported like domain validation failures.

    Response format:
        {
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": [... pydantic/fastapi error details ...]
        }
    """
    return JSONResponse(
        status_code=400,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


# PUBLIC_INTERFACE
@app.get("/api/health", summary="Health Check", tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        A JSON object indicating service health.
    """
    return {
        "status": "UP",
        "message": "Task Manager Backend is running",
        "timestamp": datetime.now().isoformat(),
        "version": __version__,
    }


# PUBLIC_INTERFACE
@app.get("/api/info", summary="Service information", tags=["health"])
def info():
    return {
        "application": "Task Manager Backend",
        "version": __version__,
        "backend": _settings.persistence_backend,
    }


# Include routers
app.include_router(users_router.router)
app.include_router(tasks_router.router)
