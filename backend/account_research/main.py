from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.db import SessionLocal, init_db
from .core.logging import configure_logging
from .api.routes_accounts import router as accounts_router
from .api.routes_jobs import router as jobs_router
from .api.routes_process import router as process_router
from .services.collaborators import get_collaborators
from .services.processor import JobProcessor
from .services.registry import ActiveJobRegistry

configure_logging()
settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.AUTO_CREATE_SCHEMA:
        init_db()

    # one registry per process, shared by the processor and the status routes
    registry = ActiveJobRegistry()
    collaborators = get_collaborators()
    app.state.processor = JobProcessor(
        registry,
        SessionLocal,
        collaborators.research,
        collaborators.categorizer,
        settings,
    )
    logger.info("Job processor ready", extra={"step": "startup"})
    try:
        yield
    finally:
        # interrupted jobs stay ``processing`` and are resumable after restart
        await app.state.processor.shutdown()
        logger.info("Job processor stopped", extra={"step": "shutdown"})


app = FastAPI(title="Account Research API", lifespan=lifespan)

# CORS:
# - In prod, FRONTEND_ORIGIN is required and we never fall back to "*".
# - In non-prod, wide-open CORS is only enabled if CORS_ALLOW_ALL_ORIGINS=True.
if settings.ENV.lower() == "prod":
    if not settings.FRONTEND_ORIGIN:
        raise RuntimeError(
            "FRONTEND_ORIGIN must be set in production – refusing to start with wide-open CORS."
        )
    origins = [o.strip() for o in settings.FRONTEND_ORIGIN.split(",") if o.strip()]
elif settings.CORS_ALLOW_ALL_ORIGINS or not settings.FRONTEND_ORIGIN:
    origins = ["*"]
else:
    origins = [o.strip() for o in settings.FRONTEND_ORIGIN.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(accounts_router, prefix=settings.API_PREFIX)
app.include_router(jobs_router, prefix=settings.API_PREFIX)
app.include_router(process_router, prefix=settings.API_PREFIX)
