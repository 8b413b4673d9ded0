import asyncio
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from dotenv import load_dotenv
from app.api import health_route, webhook_route
from app.dependencies.depends import ServiceContainer
from configs.settings import get_settings
from configs.logger import logger

load_dotenv()


async def sweep_idle_conversations(container: ServiceContainer) -> None:
    settings = container.settings
    while True:
        await asyncio.sleep(settings.CONVERSATION_SWEEP_INTERVAL_SECONDS)
        container.conversations.evict_idle(settings.CONVERSATION_IDLE_TTL_SECONDS)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if container is None:
            try:
                settings = get_settings()
            except ValidationError as e:
                logger.error(f"Invalid configuration, refusing to start: {str(e)}")
                raise
            app.state.container = ServiceContainer(settings)
        else:
            app.state.container = container

        sweeper = asyncio.create_task(sweep_idle_conversations(app.state.container))
        logger.info("Pillbox bot started")
        yield
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
        await app.state.container.scheduler.shutdown()
        logger.info("Pillbox bot stopped")

    app = FastAPI(title="Pillbox WhatsApp bot", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )
    app.include_router(webhook_route.router)
    app.include_router(health_route.router)
    return app


app = create_app()
