from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging
import uuid

from cragsearch.core.config import settings
from cragsearch.logging import configure_logging
from cragsearch.api.routes import router as api_router
from cragsearch.middleware.logging import LoggingMiddleware
from cragsearch.services.catalog_store import (
    CatalogStore,
    InMemoryCatalogStore,
    SupabaseCatalogStore,
    default_fixture_path,
)
from cragsearch.services.search_engine import SearchEngine
from cragsearch.services.spatial_assignment import SpatialAssigner

configure_logging()
logger = logging.getLogger(__name__)

def build_store() -> CatalogStore:
    """Supabase when configured, otherwise the bundled fixture catalog."""
    if settings.USE_IN_MEMORY_STORE or not settings.SUPABASE_URL:
        logger.info("Using in-memory catalog store.")
        return InMemoryCatalogStore.from_file(default_fixture_path())
    logger.info(f"Using Supabase catalog store at {settings.SUPABASE_URL}")
    return SupabaseCatalogStore()

def create_app(store: Optional[CatalogStore] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Application startup: v{settings.VERSION}")
        catalog = store if store is not None else build_store()
        app.state.store = catalog
        app.state.engine = SearchEngine(catalog)
        app.state.assigner = SpatialAssigner(catalog)
        yield
        logger.info("Application shutdown: Cleaning up resources.")
        app.state.engine.cancel_pending()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description=settings.BRIEF_DESCRIPTION,
        lifespan=lifespan,
    )
    app.add_middleware(LoggingMiddleware)
    app.include_router(api_router, prefix="/api")

    @app.get("/health", status_code=status.HTTP_200_OK)
    async def health_check():
        return {"status": "ok", "version": settings.VERSION}

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        error_id = str(uuid.uuid4())
        logger.error(f"Unhandled exception (ID: {error_id}): {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": {
                    "error": "INTERNAL_SERVER_ERROR",
                    "detail": "An unexpected error occurred. Please report this error ID.",
                    "error_id": error_id
                }
            }
        )

    return app

app = create_app()
