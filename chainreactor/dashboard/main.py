"""
ChainReactor Dashboard Backend - FastAPI integration layer

Wires a PipelineService into the app and mounts the pipeline router.
Domain logic belongs in chainreactor.service and chainreactor.pipeline.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chainreactor import __version__
from chainreactor.config import ChainReactorConfig
from chainreactor.service import PipelineService

from .routers import pipelines


def create_app(
    config: Optional[ChainReactorConfig] = None,
    service: Optional[PipelineService] = None
) -> FastAPI:
    """
    Build the dashboard application.

    Args:
        config: Configuration (defaults to ChainReactorConfig.from_environment())
        service: Pre-built service; takes precedence over `config`
    """
    logger = logging.getLogger(__name__)
    if service is None:
        config = config or ChainReactorConfig.from_environment()
        service = PipelineService(config, logger=logger)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan event handler for startup and shutdown."""
        logger.info(f"ChainReactor API started (root: {service.config.root})")
        yield
        for name in service.registry.names():
            if service.stop(name):
                logger.info(f"Stopped pipeline {name!r} on shutdown")
        logger.info("ChainReactor API stopped")

    app = FastAPI(title="ChainReactor", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.service = service
    app.include_router(pipelines.router)

    @app.get("/")
    async def root():
        return {"message": "ChainReactor API", "status": "running"}

    @app.get("/health")
    async def health():
        return {"status": "ok", "running": [n for n in service.registry.names() if service.is_running(n)]}

    return app
