"""
Background worker process entrypoint.

Drains the notification outbox and the QR render queue every interval.
Set ``WORKER_RUN_SWEEPS=true`` to also run the expiry sweeps here when the
API processes run with ``ENABLE_EXPIRY_SCHEDULER=false``.
"""

from __future__ import annotations

import logging
import os
import time

from .core.config import settings
from .core.db import SessionLocal
from .core.logging_config import setup_logging
from .services.expiry_scheduler import run_sweeps
from .services.notification_worker import build_providers, process_outbox_batch
from .services.pass_artifacts import process_artifact_batch

logger = logging.getLogger("worker")


def run_once(db, *, providers, run_sweeps_too: bool = False) -> dict:
    result = {"sweeps": None}
    if run_sweeps_too:
        result["sweeps"] = run_sweeps(db)
    result["artifacts"] = process_artifact_batch(db)
    result["notifications"] = process_outbox_batch(db, providers=providers)
    return result


def main() -> int:
    setup_logging()
    logger.info("Worker booted (pid=%s)", os.getpid())
    interval = int(os.getenv("WORKER_INTERVAL_SEC", "10"))
    run_sweeps_too = os.getenv("WORKER_RUN_SWEEPS", "false").lower() in {"1", "true", "yes"}
    sweep_every = max(interval, settings.expiry_sweep_interval_sec)
    last_sweep = 0.0

    providers = build_providers()
    logger.info("Worker started interval=%ss sweeps=%s", interval, run_sweeps_too)

    while True:
        try:
            with SessionLocal() as db:
                due = run_sweeps_too and (time.monotonic() - last_sweep) >= sweep_every
                run_once(db, providers=providers, run_sweeps_too=due)
                if due:
                    last_sweep = time.monotonic()
            time.sleep(interval)
        except KeyboardInterrupt:
            return 0
        except Exception:
            logger.exception("Worker loop error")
            time.sleep(interval)


if __name__ == "__main__":
    raise SystemExit(main())
