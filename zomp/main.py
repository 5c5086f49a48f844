import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from zomp.config import settings
from zomp.database import dispose_engine
from zomp.errors import ApiError
from zomp.schemas import INVALID_BODY
from zomp.middleware import RequestTimingMiddleware
from zomp.routers import account
from zomp.routers.resources import comic_router, story_router
from zomp.sessions import session_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await session_store.connect()
    yield
    # Shutdown
    await session_store.disconnect()
    await dispose_engine()


app = FastAPI(
    title="Zomp API",
    description="Publishing backend for comics and stories",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.CLIENT_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error envelopes: every failure is rendered as {"error": <message>}.
@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.debug("Rejected malformed request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"error": INVALID_BODY})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Document store error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "internal server error"})


# Routers
app.include_router(account.router)
app.include_router(comic_router)
app.include_router(story_router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
