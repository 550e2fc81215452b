"""FastAPI application entry point for the contractor platform document engine."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from contractor_platform.app.config import get_settings
from contractor_platform.infra.database import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database on startup."""
    await init_db()

    settings = get_settings()
    if settings.esign_provider == "boldsign" and not settings.boldsign_api_key:
        logger.warning("BoldSign API key not configured; sending for signature will fail")
    if settings.esign_provider == "docusign" and not settings.docusign_integration_key:
        logger.warning("DocuSign integration key not configured; sending for signature will fail")
    yield


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="Contractor Platform Document Engine API",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS middleware: any origin in debug mode
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
from contractor_platform.app.routes.company import router as company_router
from contractor_platform.app.routes.documents import router as documents_router
from contractor_platform.app.routes.esign_webhook import router as esign_webhook_router
from contractor_platform.app.routes.projects import router as projects_router

app.include_router(company_router)
app.include_router(documents_router)
app.include_router(projects_router)
app.include_router(esign_webhook_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "contractor-platform"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "contractor_platform.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
