"""FastAPI application factory."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from moodlog import __version__
from moodlog.api.routes import router
from moodlog.config import ConfigManager
from moodlog.llm.client import LLMClient
from moodlog.services.background import TaskRegistry
from moodlog.services.committer import PersistenceCommitter
from moodlog.services.pipeline import GenerationPipeline
from moodlog.services.storage import EntryStore, JsonFileEntryStore
from moodlog.utils.logging import get_logger


logger = get_logger(__name__)


def create_app(
    config: Optional[ConfigManager] = None,
    store: Optional[EntryStore] = None,
    llm_client: Optional[LLMClient] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Loaded configuration (default: ConfigManager.load_default())
        store: Record store (default: JsonFileEntryStore under storage.data_dir)
        llm_client: LLM client (default: built from the llm section)

    Returns:
        FastAPI app with routes under /api
    """
    if config is None:
        config = ConfigManager.load_default()
    if store is None:
        store = JsonFileEntryStore(Path(config.storage.data_dir))
    if llm_client is None:
        llm_client = LLMClient(config.llm)

    registry = TaskRegistry()
    pipeline = GenerationPipeline(
        llm_client,
        PersistenceCommitter(store),
        config.llm,
        config.pipeline,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("server_started", store=type(store).__name__, model=config.llm.model)
        yield
        # In-flight requests still get their commit window
        drained = await registry.drain(timeout=config.pipeline.commit_timeout)
        logger.info("server_stopped", **drained)

    app = FastAPI(
        title="Moodlog API",
        description="Streaming journal analysis",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.store = store
    app.state.pipeline = pipeline
    app.state.registry = registry

    app.include_router(router, prefix="/api")
    return app
