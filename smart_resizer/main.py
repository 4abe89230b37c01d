import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from smart_resizer.api.v1.routes import router as api_v1_router
from smart_resizer.config import ResizerSettings, load_settings
from smart_resizer.services.executors import ImageGenerator
from smart_resizer.services.format_presets import FormatPresetRegistry
from smart_resizer.services.jobs import JobStatusStore
from smart_resizer.services.orchestrator import build_orchestrator
from smart_resizer.services.storage import LocalObjectStorage
from smart_resizer.services.worker import JobWorker

logger = logging.getLogger(__name__)

ENV_PATH = Path(__file__).parent.parent / ".env"


def _load_env_file(env_path: Path = ENV_PATH) -> None:
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=True)
        logger.info("Loaded environment from %s", env_path)
    else:
        logger.info("No .env file at %s, using process environment", env_path)


def create_app(
    settings: ResizerSettings | None = None,
    generator: ImageGenerator | None = None,
) -> FastAPI:
    """
    Application factory for the Smart Resizer API.

    `settings` and `generator` can be injected so tests run without a real
    environment or network access.
    """
    if settings is None:
        _load_env_file()
        settings = load_settings()

    registry = (
        FormatPresetRegistry.from_json_file(settings.presets_file)
        if settings.presets_file
        else FormatPresetRegistry.default()
    )
    store = JobStatusStore()
    storage = LocalObjectStorage(settings.storage_dir, settings.public_base_url)
    orchestrator = build_orchestrator(settings, store, registry, storage=storage, generator=generator)
    worker = JobWorker(store, orchestrator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        worker.start()
        try:
            yield
        finally:
            await worker.stop()

    app = FastAPI(
        title="Smart Resizer API",
        version="0.1.0",
        description="Adaptive multi-format resizing of advertising creatives.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.job_store = store
    app.state.worker = worker

    # Infrastructure-level health check (non-versioned) primarily for ops.
    @app.get("/health", tags=["health"])
    async def root_health_check() -> dict:
        """Simple root health check endpoint."""
        return {"status": "ok"}

    app.include_router(api_v1_router)
    # Serves artifacts at the URLs recorded on format results.
    app.mount("/files", StaticFiles(directory=storage.root), name="files")

    return app
