# pensive/lifespan.py
from contextlib import asynccontextmanager
from fastapi import FastAPI

from . import config
from .logging_setup import get_logger
from .services import build_services
from .scheduler import add_jobs, start_scheduler, shutdown_scheduler

logger = get_logger("pensive.lifespan")

@asynccontextmanager
async def lifespan(app: FastAPI):
    # ---- Startup ----
    logger.info("APP STARTUP")
    if getattr(app.state, "services", None) is None:
        # tests install their own container before the app starts
        app.state.services = build_services()
    services = app.state.services
    logger.info(f"LLM mode: {'demo (mock analyses)' if services.analyzer.demo_mode else services.analyzer.model}")

    if config.SCHEDULER_ENABLED and not getattr(app.state, "scheduler_started", False):
        logger.info("Registering scheduler jobs")
        add_jobs(services)
        start_scheduler()
        app.state.scheduler_started = True
        logger.info("Scheduler started")

    # Hand control to the application
    yield

    # ---- Shutdown ----
    logger.info("APP SHUTDOWN")
    if getattr(app.state, "scheduler_started", False):
        logger.info("Stopping scheduler")
        shutdown_scheduler(wait=False)
        app.state.scheduler_started = False
