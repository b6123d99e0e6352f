import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .agent.services import AgentServices, build_services
from .config import get_settings
from .routers.chat import router as chat_router
from .routers.dashboard import router as dashboard_router
from .routers.maintenance import router as maintenance_router


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(services: Optional[AgentServices] = None) -> FastAPI:
    services = services or build_services(get_settings())
    configure_logging(services.settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.services.outbox.start()
        try:
            yield
        finally:
            await app.state.services.outbox.stop()
            await app.state.services.aclose()

    app = FastAPI(title="WellBuddy Agent Service", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(chat_router)
    app.include_router(dashboard_router)
    app.include_router(maintenance_router)
    return app


app = create_app()
