"""
Entry point for the campus gate pass backend.

This script creates the FastAPI application, includes all API routers and
starts the expiry scheduler thread. Run with:

    uvicorn gatepass.main:app --reload

"""

from __future__ import annotations

import logging
import os
import threading

from fastapi import FastAPI

from .core.db import engine
from .models import Base
from .services.expiry_scheduler import run_expiry_scheduler
from .scripts.run_migrations import run_migrations_to_head

from .api import api_router
from .core.config import settings, get_app_env
from .core.errors import log_exception, register_exception_handlers
from .core.logging_config import setup_logging


def create_app() -> FastAPI:
    app = FastAPI(title="Campus Gate Pass Backend", version="0.1.0")
    app.include_router(api_router)
    register_exception_handlers(app)
    app.state.expiry_stop = None
    app.state.expiry_thread = None

    @app.on_event("startup")
    def _init_db() -> None:
        logger = logging.getLogger("startup")
        env = get_app_env()
        if settings.auto_create_db:
            try:
                Base.metadata.create_all(bind=engine)
            except Exception as exc:
                log_exception(logger, "DB create_all failed", exc=exc)
                if env == "prod":
                    raise
        if os.getenv("AUTO_RUN_MIGRATIONS", "false").lower() in {"1", "true", "yes"}:
            try:
                run_migrations_to_head()
            except Exception as exc:
                log_exception(logger, "DB migrations failed", exc=exc)
                if env == "prod":
                    raise
        if os.getenv("ENABLE_EXPIRY_SCHEDULER", "true").lower() in {"1", "true", "yes"}:
            stop_event = threading.Event()
            thread = threading.Thread(
                target=run_expiry_scheduler,
                args=(stop_event,),
                daemon=True,
                name="expiry-scheduler",
            )
            thread.start()
            app.state.expiry_stop = stop_event
            app.state.expiry_thread = thread

    @app.on_event("shutdown")
    def _shutdown() -> None:
        stop_event = app.state.expiry_stop
        if stop_event is not None:
            stop_event.set()
        thread = app.state.expiry_thread
        if thread is not None:
            thread.join(timeout=5)

    return app


setup_logging()
app = create_app()
