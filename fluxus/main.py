from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import health, passkey_mappings
from .config import settings
from .logging_config import setup_logging
from .registry.server_store import get_passkey_mapping_database


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    yield
    get_passkey_mapping_database().close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Fluxus Wallet API",
        description="Passkey mapping registry for the Fluxus stablecoin wallet",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(passkey_mappings.router)

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "Fluxus Wallet API",
            "version": __version__,
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "fluxus.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
