# medkit/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medkit.api.exception_handlers import register_exception_handlers
from medkit.api.router import api_router
from medkit.core.config import settings
from medkit.core.logging import configure_logging
from medkit.core.scheduling import build_alert_scheduler

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if settings.ALERTS_SCHEDULER_ENABLED:
        scheduler = build_alert_scheduler()
        scheduler.start()
    else:
        logger.info("Expiry alert scheduler disabled")
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


app = FastAPI(
    title=settings.PROJECT_NAME,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)
app.include_router(api_router, prefix=settings.API_V1_STR)


# Health
@app.get("/")
def root():
    return {"message": f"{settings.PROJECT_NAME} API running", "version": "v1"}
