import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.errors import ChatError
from app.core.logging import configure_logging
from app.Etc.health import router as health_router
from app.Chat.chat_gateway import get_gateway
from app.Chat.chatWs import router as chatWs
from app.Chat.chatRest import router as chatRest
from app.Chat.chatSse import router as chatSse
from app.User.userRest import router as user_router
from app.model_base import Base
from app.db.session import engine


logger = logging.getLogger(__name__)


def create_application() -> FastAPI:
    configure_logging()
    application = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        docs_url="/swagger",
        redoc_url=None,
    )
    application.include_router(health_router)
    application.include_router(chatWs)
    application.include_router(chatRest)
    application.include_router(chatSse)
    application.include_router(user_router)

    @application.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    return application


app = create_application()


async def _sweep_typing_forever() -> None:
    gateway = get_gateway()
    while True:
        await asyncio.sleep(settings.typing_sweep_interval_s)
        rooms = await run_in_threadpool(gateway.sweep_typing)
        if rooms:
            logger.debug("[TYPING] expired marks in rooms %s", rooms)


@app.on_event("startup")
async def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    app.state.typing_sweeper = asyncio.create_task(_sweep_typing_forever())


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweeper = getattr(app.state, "typing_sweeper", None)
    if sweeper is not None:
        sweeper.cancel()
