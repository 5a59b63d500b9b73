"""Entry point for the receiver service."""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from common.constants import SUPPORTED_TRANSFER_METHODS
from common.logging_config import setup_logging
from receiver.config import (
    ARTIFACT_RETENTION,
    CORS_ORIGINS,
    EVENT_QUEUE_SIZE,
    IDLE_SWEEP_INTERVAL_SECONDS,
    MAX_CHUNK_SIZE,
    RECEIVER_HOST,
    RECEIVER_PORT,
    SESSION_IDLE_TIMEOUT_SECONDS,
)
from receiver.events import EventPublisher
from receiver.exceptions import (
    TransferError,
    InvalidArgumentError,
    AlreadyExistsError,
    NotFoundError,
    OutOfRangeError,
    HashMismatchError,
    InvalidStateError,
    MissingChunkError
)
from receiver.idle_reaper import IdleSessionReaper
from receiver.registry import TransferRegistry
from receiver.routes import transfer_router, file_router, realtime_router
from receiver.schemas.common import HealthResponse

logger = setup_logging('receiver')


async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.debug(f"Request started: {request.method} {request.url.path} [request_id={request_id}]")

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


def _error_response(request: Request, exc: TransferError, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def invalid_argument_handler(request: Request, exc: InvalidArgumentError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Invalid argument error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return _error_response(request, exc, status.HTTP_400_BAD_REQUEST)


async def already_exists_handler(request: Request, exc: AlreadyExistsError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Already exists error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return _error_response(request, exc, status.HTTP_409_CONFLICT)


async def not_found_handler(request: Request, exc: NotFoundError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Not found error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return _error_response(request, exc, status.HTTP_404_NOT_FOUND)


async def out_of_range_handler(request: Request, exc: OutOfRangeError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Out of range error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return _error_response(request, exc, status.HTTP_400_BAD_REQUEST)


async def hash_mismatch_handler(request: Request, exc: HashMismatchError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Hash mismatch error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return _error_response(request, exc, status.HTTP_400_BAD_REQUEST)


async def invalid_state_handler(request: Request, exc: InvalidStateError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"Invalid state error: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return _error_response(request, exc, status.HTTP_409_CONFLICT)


async def missing_chunk_handler(request: Request, exc: MissingChunkError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Missing chunk error: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return _error_response(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR)


async def transfer_error_handler(request: Request, exc: TransferError):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Transfer exception: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return _error_response(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR)


def create_app(
    registry: Optional[TransferRegistry] = None,
    idle_timeout_seconds: float = SESSION_IDLE_TIMEOUT_SECONDS,
    idle_sweep_interval: float = IDLE_SWEEP_INTERVAL_SECONDS,
) -> FastAPI:
    """
    Build the HTTP/WebSocket binding around one registry instance.

    Args:
        registry: Registry to expose; a fresh one is created if omitted
        idle_timeout_seconds: Idle eviction threshold, 0 disables the reaper
        idle_sweep_interval: Seconds between idle sweeps

    Returns:
        Configured FastAPI application
    """
    if registry is None:
        registry = TransferRegistry(
            publisher=EventPublisher(max_queue_size=EVENT_QUEUE_SIZE),
            retention_limit=ARTIFACT_RETENTION,
            max_chunk_size=MAX_CHUNK_SIZE,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Start and stop the idle reaper around the application's lifetime.
        """
        logger.info("Receiver service starting up...")
        if app.state.reaper:
            await app.state.reaper.start()
        try:
            yield
        finally:
            logger.info("Receiver service shutting down...")
            if app.state.reaper:
                await app.state.reaper.stop()

    app = FastAPI(
        title="Chunk Relay Receiver",
        description="Receives hash-verified file chunks and reassembles them",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.registry = registry
    app.state.reaper = None
    if idle_timeout_seconds > 0:
        app.state.reaper = IdleSessionReaper(
            registry,
            idle_timeout_seconds=idle_timeout_seconds,
            interval_seconds=idle_sweep_interval,
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(log_requests)

    app.add_exception_handler(InvalidArgumentError, invalid_argument_handler)
    app.add_exception_handler(AlreadyExistsError, already_exists_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(OutOfRangeError, out_of_range_handler)
    app.add_exception_handler(HashMismatchError, hash_mismatch_handler)
    app.add_exception_handler(InvalidStateError, invalid_state_handler)
    app.add_exception_handler(MissingChunkError, missing_chunk_handler)
    app.add_exception_handler(TransferError, transfer_error_handler)

    app.include_router(transfer_router)
    app.include_router(file_router)
    app.include_router(realtime_router)

    @app.get("/")
    async def root():
        """
        Root endpoint for health check.
        """
        return {"message": "Chunk Relay Receiver API", "status": "running"}

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check():
        """
        Health check endpoint with registry counters.
        """
        stats = registry.stats()
        return HealthResponse(
            status="ok",
            active_transfers=stats["active_transfers"],
            reconstructed_files=stats["reconstructed_files"],
            connected_clients=stats["connected_clients"],
            published_events=stats["published_events"],
            supported_methods=list(SUPPORTED_TRANSFER_METHODS),
        )

    return app


app = create_app()


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    logger.info(f"Receiver listening on {RECEIVER_HOST}:{RECEIVER_PORT}")
    uvicorn.run(
        "receiver.main:app",
        host=RECEIVER_HOST,
        port=RECEIVER_PORT,
    )


if __name__ == "__main__":
    main()
