# backend/app/main.py
from __future__ import annotations

import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI
from loguru import logger

from backend.app.api.pubsub import router as pubsub_router
from backend.app.api.status import router as status_router
from backend.app.status import pipeline_status
from inbox_triage.app.run import Runtime, build_runtime, enable_watch, scan_backlog
from inbox_triage.config.logging_config import configure_logging
from inbox_triage.config.settings import load_settings


def _default_runtime() -> Runtime:
    settings = load_settings()
    configure_logging(settings.log_level)
    return build_runtime(settings)


def _run_backlog(runtime: Runtime) -> None:
    try:
        submitted = scan_backlog(runtime, runtime.settings.initial_emails_to_fetch)
    except Exception as exc:
        logger.exception(f"Backlog scan failed: {exc}")
        pipeline_status.update(detail=f"Backlog scan failed: {exc}")
        return
    pipeline_status.update(backlog_submitted=submitted)


def create_app(
    runtime_factory: Callable[[], Runtime] = _default_runtime,
    *,
    scan_on_start: bool = True,
    shutdown_timeout: Optional[float] = 30.0,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        pipeline_status.update(state="starting", detail="Starting pipeline")
        runtime = runtime_factory()
        runtime.start()
        enable_watch(runtime)
        app.state.runtime = runtime
        pipeline_status.attach(runtime.snapshot)

        if scan_on_start:
            # The scan blocks on backpressure, so it runs beside the server.
            threading.Thread(
                target=_run_backlog,
                args=(runtime,),
                name="backlog-scan",
                daemon=True,
            ).start()

        pipeline_status.update(state="running", detail="Listening for Gmail notifications")
        logger.info("inbox-triage is running")
        try:
            yield
        finally:
            logger.info("Shutting down gracefully...")
            pipeline_status.update(state="stopping", detail="Draining worker pool")
            runtime.shutdown(drain=True, timeout=shutdown_timeout)
            pipeline_status.attach(None)
            app.state.runtime = None
            pipeline_status.update(state="stopped", detail="Pipeline stopped")

    app = FastAPI(title="inbox-triage API", lifespan=lifespan)
    app.include_router(pubsub_router, prefix="/api")
    app.include_router(status_router, prefix="/api")
    return app


app = create_app()
