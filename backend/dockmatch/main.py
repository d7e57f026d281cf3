"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import router
from .config import get_settings
from . import __version__

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown."""
    # Startup
    logger.info("Starting Dock List Label Matcher API...")
    settings = get_settings()

    # OCR readers are created per reconciliation session, not kept warm
    if settings.vision_assist_enabled and not settings.openai_api_key:
        logger.warning("Vision assist enabled without an OpenAI API key - fallback disabled")
    elif settings.vision_assist_enabled:
        logger.info(f"Vision assist enabled (model={settings.vision_model})")

    logger.info(f"API ready - Version {__version__}")

    yield

    # Shutdown
    logger.info("Shutting down Dock List Label Matcher API...")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="""
## Dock List Label Matcher API

Reads shipping references off rendered parcel labels and reconciles them
against a dock list (manifest) of order numbers.

### Features
- **Manifest parsing**: CSV / TSV / free-text dock lists, or learn a
  layout from two example tokens
- **Reference extraction**: embedded text, DataMatrix, glyph-by-glyph OCR,
  optional vision fallback
- **Reconciliation**: fuzzy matching and package numbering per order

### Quick Start
1. Use `/health` to check API status
2. Use `/manifest/parse` (or `/manifest/tokens` + `/manifest/learn`) to load the dock list
3. Use `/reconcile` with label images, the manifest and capture rules
        """,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Configure CORS - restrict to allowed frontend origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # Include routes
    app.include_router(router, prefix="/api/v1")

    # Root redirect to docs
    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "message": "Dock List Label Matcher API",
            "version": __version__,
            "docs": "/docs"
        }

    return app


# Create app instance
app = create_app()
