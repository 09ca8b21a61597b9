"""FastAPI application entry point for the dictation learning engine."""

import importlib
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from dictation_learning import __version__
from dictation_learning.api.routes import router
from dictation_learning.config import Settings, get_settings
from dictation_learning.engine import LearningEngine, build_cloud_store, build_engine
from dictation_learning.tools.base import AIProvider

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def load_provider(path: str) -> AIProvider:
    """Instantiate an AI provider from a ``"module:callable"`` path.

    Raises:
        ValueError: If the path is malformed or the result is not a provider
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"AI provider must look like 'module:callable', got {path!r}")

    factory = getattr(importlib.import_module(module_name), attr)
    provider = factory()
    if not isinstance(provider, AIProvider):
        raise ValueError(f"{path} did not produce an AI provider")
    return provider


def create_app(
    engine: LearningEngine | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        engine: Pre-built engine (tests pass one wired with fakes)
        settings: Settings used to build the engine when none is given

    Returns:
        Configured FastAPI app
    """
    if engine is None:
        settings = settings or get_settings()
        if not settings.ai_provider:
            raise ValueError("AI_PROVIDER must be set to a 'module:callable' path")
        engine = build_engine(
            settings,
            load_provider(settings.ai_provider),
            cloud_store=build_cloud_store(settings),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage engine lifecycle."""
        await engine.start()
        yield
        await engine.stop()

    app = FastAPI(
        title="Dictation Learning",
        description="Learns from corrections to AI-refined dictation",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.include_router(router)
    return app


def main():
    """Run the engine's HTTP service."""
    settings = get_settings()

    logger.info(f"Database: {settings.database_path}")
    logger.info(f"Cloud sync: {'enabled' if settings.supabase_url else 'disabled'}")
    logger.info(f"Listening on: {settings.host}:{settings.port}")

    app = create_app(settings=settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
