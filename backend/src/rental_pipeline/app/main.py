"""FastAPI application entry point for the rental pipeline API."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rental_pipeline.app.config import get_settings
from rental_pipeline.domain.schemas import HealthResponse
from rental_pipeline.infra.database import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database on startup."""
    await init_db()
    if not settings.google_calendar_access_token:
        logger.warning("Google Calendar not configured; video visits will have no meet link")
    yield


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="Rental Pipeline API",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS middleware: all origins in debug mode
_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from rental_pipeline.app.routes.auth import router as auth_router
from rental_pipeline.app.routes.opportunities import router as opportunities_router
from rental_pipeline.app.routes.offers import router as offers_router

app.include_router(auth_router)
app.include_router(opportunities_router)
app.include_router(offers_router)


@app.get("/health", tags=["health"], response_model=HealthResponse)
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "rental-pipeline"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "rental_pipeline.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
