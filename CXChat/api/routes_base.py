# Standard library imports
import logging
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from CXChat import __version__ as __main_version__
from CXChat.config import config
from CXChat.core.server.context import AppContext
from CXChat.core.server.exceptions import AuthenticationError, CXChatError

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class SendMessageRequest(BaseModel):
    sender: Optional[str] = None
    receiver: Optional[str] = None
    content: Optional[str] = None
    type: Optional[str] = None
    postId: Optional[str] = None


class AuthSendMessageRequest(BaseModel):
    receiverId: Optional[str] = None
    message: Optional[str] = None
    type: Optional[str] = None
    postId: Optional[str] = None


class NotifyRequest(BaseModel):
    receiverId: Optional[str] = None
    type: Optional[str] = None
    content: Optional[str] = None
    postId: Optional[str] = None


class PostLikedRequest(BaseModel):
    ownerId: Optional[str] = None
    likes: List[str] = []


class NoCacheMiddleware(BaseHTTPMiddleware):
    """Counts and feeds change on every push; never let proxies cache them."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith(API_PREFIX):
            response.headers["Cache-Control"] = "no-store"
        return response


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def extract_token(request: Request) -> Optional[str]:
    """Bearer header first, then the auth cookie."""
    auth = request.headers.get("Authorization")
    if auth and auth.startswith("Bearer "):
        return auth.split(" ", 1)[1].strip() or None
    return request.cookies.get(config.AUTH_COOKIE_NAME) or None


def get_current_user(request: Request) -> str:
    """Extract and validate current user id from the request token."""
    ctx = get_context(request)
    return ctx.authenticator.require(extract_token(request))


async def cxchat_error_handler(request: Request, exc: CXChatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"error": "Internal Server Error"})
    if not isinstance(exc, AuthenticationError):
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


def create_base_app(context: AppContext) -> FastAPI:
    """
    Build the FastAPI application shell: metadata, middleware and error
    handlers. Routes are attached by ``routes_api.create_app``.
    """
    app = FastAPI(
        title="CXChat api",
        version=__main_version__,
        description="Messaging and notification api for CXChat.",
        contact={"name": "CXChat Team"}
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.CLIENT_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(NoCacheMiddleware)

    app.add_exception_handler(CXChatError, cxchat_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    return app
