from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.factory import build_default_services


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    services = build_default_services()
    try:
        yield
    finally:
        await services.shutdown()
        build_default_services.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Aquaculture Analytics",
        description="Reading counts, parameter averages and exports over the aquaculture sensor backend.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
