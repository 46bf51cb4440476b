# pensive/main.py
from fastapi import FastAPI

from .logging_setup import setup_logging, get_logger
from .middleware import RequestContextMiddleware
from .exception_handling import register_exception_handlers
from .lifespan import lifespan

from .routers import health, content, concepts, feeds, podcasts, digests, users, cron, grok

setup_logging()  # <-- set up logging ASAP
logger = get_logger("pensive.main")

app = FastAPI(title="Pensive", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)

register_exception_handlers(app)

# Include routers
app.include_router(health.router)
app.include_router(content.router)
app.include_router(concepts.router)
app.include_router(feeds.router)
app.include_router(podcasts.router)
app.include_router(digests.router)
app.include_router(users.router)
app.include_router(cron.router)
app.include_router(grok.router)
