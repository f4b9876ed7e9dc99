import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from doodlesync.config import Settings
from doodlesync.database.connection import close_mongo_connection, connect_to_mongo
from doodlesync.routers.chat import doodles_router
from doodlesync.routers.chat import router as chat_router
from doodlesync.routers.conversations import router as conversations_router
from doodlesync.routers.friends import router as friends_router
from doodlesync.services.errors import ConversationLoadError, ConversationsUnavailableError, GatewayError
from doodlesync.services.gateway import MongoGateway
from doodlesync.services.session import SessionRegistry
from doodlesync.utils.realtime_bus import create_bus


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db = await connect_to_mongo(settings.MONGO_URL, settings.MONGO_DB_NAME)
    bus = create_bus(settings.REDIS_URL)
    gateway = MongoGateway(db, bus)
    await gateway.ensure_indexes()
    app.state.sessions = SessionRegistry(gateway, settings)
    logger.info("doodlesync started")
    try:
        yield
    finally:
        await app.state.sessions.close_all()
        await bus.close()
        await close_mongo_connection()


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"detail": str(exc)})


async def unavailable_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def create_app() -> FastAPI:
    app = FastAPI(title="doodlesync", lifespan=lifespan)

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(ConversationLoadError, unavailable_handler)
    app.add_exception_handler(ConversationsUnavailableError, unavailable_handler)
    app.add_exception_handler(ValueError, value_error_handler)

    app.include_router(conversations_router)
    app.include_router(chat_router)
    app.include_router(doodles_router)
    app.include_router(friends_router)

    @app.get("/")
    async def root():
        return {"message": "doodlesync is running"}

    return app


app = create_app()
