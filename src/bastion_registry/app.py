"""FastAPI application factory for the bastion registry."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from bastion_registry.common.config import get_settings
from bastion_registry.common.schemas import HealthResponse


def create_app() -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from bastion_registry.deps import get_daemon, get_db, get_propagator
        db = get_db()
        await db.init()
        await db.create_all()
        await get_propagator().resync()
        daemon = get_daemon()
        if daemon is not None:
            daemon.start()
        yield
        # Shutdown
        if daemon is not None:
            daemon.stop()
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    from bastion_registry.registry.router import router as registry_router
    app.include_router(registry_router, tags=["registry"])

    return app
