from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse

from felis.orm.db import init_db, close_db
from felis.orm.store import SessionStore
from felis.routes.health import router as health_router
from felis.routes.legacy import router as legacy_router
from felis.routes.session import router as session_router
from felis.settings import settings
from felis.utils.errors import InternalError, InvalidPayload, StorageUnavailable
from felis.utils.logger_setup import setup_logging
from felis.utils.redis import SessionFeed
from felis.ws.session import session_ws


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db(generate_schemas=settings.db.generate_schemas)
    if settings.redis.enabled:
        app.state.feed = SessionFeed(
            url=settings.redis.url,
            channel=settings.redis.feed_channel,
            publish_timeout=settings.redis.publish_timeout,
        )
        await app.state.feed.start()
    try:
        yield
    finally:
        await close_db()
        if app.state.feed is not None:
            await app.state.feed.stop()


async def invalid_request(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


async def invalid_payload(request: Request, exc: InvalidPayload):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def storage_unavailable(request: Request, exc: StorageUnavailable):
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage is temporarily unavailable, retry later."},
        headers={"Retry-After": "5"},
    )


async def internal_error(request: Request, exc: InternalError):
    return JSONResponse(status_code=500, content={"detail": "An error occurred while writing to the database."})


def create_app(manage_db: bool = True) -> FastAPI:
    """
    manage_db=False leaves Tortoise initialisation to the caller (tests).
    """
    setup_logging(settings.app.log_level)

    app = FastAPI(
        title="Felis Ingest API",
        lifespan=lifespan if manage_db else None,
        **(
            {
                "docs_url": "/docs",
                "redoc_url": "/redoc",
                "openapi_url": "/openapi.json"
            }
            if settings.app.debug else {"docs_url": None, "redoc_url": None, "openapi_url": None}
        )
    )
    app.state.store = SessionStore(
        op_timeout=settings.db.op_timeout,
        ping_timeout=settings.db.ping_timeout,
    )
    app.state.feed = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.app.url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, invalid_request)
    app.add_exception_handler(InvalidPayload, invalid_payload)
    app.add_exception_handler(StorageUnavailable, storage_unavailable)
    app.add_exception_handler(InternalError, internal_error)

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        app.openapi_schema = get_openapi(
            title="Felis Ingest API",
            version="1.0.0",
            routes=app.routes,
            description="Session and event ingestion for reaction-time experiments",
        )
        return app.openapi_schema

    app.openapi = custom_openapi
    app.include_router(session_router)
    app.include_router(legacy_router)
    app.include_router(health_router)
    app.add_api_websocket_route("/ws/sessions/{session_id}", session_ws)
    return app


app = create_app()
