"""FastAPI application setup for pricelens."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .api import router as api_router
from .context import AppContext
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="pricelens/main")


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """Build the app; the context is created on startup unless one is given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.context = context or AppContext.from_settings()
        try:
            yield
        finally:
            logger.info("Shutting down; closing store and HTTP client")
            await app.state.context.close()

    app = FastAPI(title="pricelens", lifespan=lifespan)

    # API routes
    app.include_router(api_router, prefix="/v1")
    return app


app = create_app()
