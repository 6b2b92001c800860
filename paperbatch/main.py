"""FastAPI application entry point."""

import logging
import threading

from paperbatch.logs import configure_logging, configure_uvicorn_logging

configure_logging()
configure_uvicorn_logging()

from fastapi import FastAPI, Request  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402

from paperbatch.config import env_flag  # noqa: E402
from paperbatch.db import create_tables  # noqa: E402
from paperbatch.schemas.batch import ErrorResponse  # noqa: E402
from paperbatch.services.jobs import NotFoundError  # noqa: E402

logger = logging.getLogger(__name__)

app = FastAPI(title="paperbatch")


@app.on_event("startup")
def startup() -> None:
    create_tables()
    if env_flag("POLLER_ENABLED"):
        _start_background_poller()


@app.on_event("shutdown")
def shutdown() -> None:
    stop: threading.Event | None = getattr(app.state, "poller_stop", None)
    if stop is not None:
        logger.info("stopping background poller")
        stop.set()


def _start_background_poller() -> None:
    from paperbatch.services.poller import build_poller

    poller = build_poller()
    stop = threading.Event()
    app.state.poller = poller
    app.state.poller_stop = stop
    threading.Thread(target=poller.run_forever, args=(stop,), name="batch-poller", daemon=True).start()
    logger.info("background poller started")


@app.exception_handler(NotFoundError)
async def _not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content=ErrorResponse(error="not_found", detail=str(exc)).model_dump(),
    )


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="internal_error", detail=str(exc)).model_dump(),
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# Import and register routers after app is defined to avoid circular imports.
from paperbatch.api import batch  # noqa: E402

app.include_router(batch.router, prefix="/batch", tags=["batch"])
