"""
FastAPI application factory for the Gemini chat backend.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_api import __version__
from chat_api.ai_gateway import AIGateway
from chat_api.api import router
from chat_api.auth_service import AuthService
from chat_api.auth_utils import TokenManager
from chat_api.config import Settings, get_settings
from chat_api.database import DatabaseConnector
from chat_api.errors import AuthError, ChatAPIError, DatabaseConnectionError
from chat_api.schemas import ErrorResponse

logger = logging.getLogger(__name__)


# --- Application Lifespan (Startup/Shutdown) ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown events."""
    logger.info("Application startup...")
    connector: DatabaseConnector = app.state.connector
    try:
        await connector.acquire()
    except DatabaseConnectionError as e:
        # Requests reconnect on demand; startup does not wait for the database.
        logger.warning(f"Initial database connection failed: {e}")

    yield

    logger.info("Application shutdown...")
    await connector.close()
    logger.info("Application shutdown complete")


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(ChatAPIError)
    async def chat_api_error_handler(request: Request, exc: ChatAPIError):
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.message).model_dump(exclude_none=True),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else first.get("msg", "Invalid request")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(
                error=message,
                detail=[{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors],
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unexpected error in {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(error="An unexpected error occurred.").model_dump(exclude_none=True),
        )


def create_app(
    settings: Optional[Settings] = None,
    connector: Optional[DatabaseConnector] = None,
    gateway: Optional[AIGateway] = None,
) -> FastAPI:
    """Build the app. The connector and gateway are created here and shared by every request."""
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    connector = connector or DatabaseConnector.from_settings(settings)
    gateway = gateway or AIGateway.from_settings(settings)
    tokens = TokenManager.from_settings(settings)

    app = FastAPI(
        title="Gemini Chat Backend",
        description="Chat relay to Google Gemini with optional per-user conversation history.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.connector = connector
    app.state.gateway = gateway
    app.state.tokens = tokens
    app.state.auth_service = AuthService(connector, tokens, query_timeout=settings.db_query_timeout)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("chat_api.main:create_app", factory=True, host="0.0.0.0", port=8000)
