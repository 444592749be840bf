"""
HTTP routes: auth, chat, chat history, model listing and health checks.

Shared objects (connector, gateway, token manager, auth service) live on
`app.state` and are handed to the routes through dependencies.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError

from chat_api import crud
from chat_api.ai_gateway import AIGateway
from chat_api.auth_service import AuthService
from chat_api.auth_utils import TokenManager
from chat_api.database import DatabaseConnector
from chat_api.errors import AuthError, DatabaseConnectionError, ValidationError
from chat_api.schemas import (
    ChatRequest,
    ChatResponse,
    CurrentUserResponse,
    HealthResponse,
    HistoryResponse,
    LoginResponse,
    ModelListResponse,
    RegisterResponse,
    UserLogin,
    UserOut,
    UserRegister,
)

logger = logging.getLogger(__name__)

router = APIRouter()

bearer_scheme = HTTPBearer(auto_error=False)


# --- Dependencies ---

def get_connector(request: Request) -> DatabaseConnector:
    return request.app.state.connector


def get_gateway(request: Request) -> AIGateway:
    return request.app.state.gateway


def get_tokens(request: Request) -> TokenManager:
    return request.app.state.tokens


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_query_timeout(request: Request) -> float:
    return request.app.state.settings.db_query_timeout


def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    tokens: TokenManager = Depends(get_tokens),
) -> Optional[uuid.UUID]:
    """User id from a valid bearer token, or None. An invalid token never rejects the request."""
    if credentials is None:
        return None
    try:
        return tokens.get_user_id_from_token(credentials.credentials)
    except AuthError as e:
        logger.warning(f"JWT verification failed, treating request as anonymous: {e}")
        return None


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    tokens: TokenManager = Depends(get_tokens),
) -> uuid.UUID:
    """Authentication dependency for routes that require a valid bearer token."""
    if credentials is None:
        raise AuthError("Authorization token is missing")
    return tokens.get_user_id_from_token(credentials.credentials)


def _user_out(user) -> UserOut:
    return UserOut(id=user.id, email=user.email, name=user.name or "")


# --- Health ---

@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy")


@router.get("/health/db")
async def database_check(connector: DatabaseConnector = Depends(get_connector)) -> Any:
    """Connection diagnostics: state, target and a sample of users (never password hashes)."""
    try:
        async with connector.session() as db:
            user_count = await crud.count_users(db)
            users = await crud.list_users(db, limit=10)
    except (DatabaseConnectionError, SQLAlchemyError, OSError) as e:
        logger.error(f"Database test error: {e}")
        info = connector.describe()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": str(e) or "Database connection failed",
                **info,
                "troubleshooting": [
                    "1. Check that DATABASE_URL is set (environment or .env)",
                    "2. Verify the connection string format, including the async driver (e.g. postgresql+asyncpg://)",
                    "3. For hosted databases, ensure this host is allowed and the credentials are correct",
                    "4. For local databases, ensure the server is running and reachable",
                ],
            },
        )

    info: Dict[str, Any] = connector.describe()
    return {
        "success": True,
        "message": "Database connection successful",
        **info,
        "user_count": user_count,
        "users": [
            {
                "id": str(u.id),
                "email": u.email,
                "name": u.name,
                "created_at": u.created_at.isoformat() if u.created_at else None,
            }
            for u in users
        ],
    }


# --- Authentication Endpoints ---

@router.post("/auth/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register_user(user_data: UserRegister, auth: AuthService = Depends(get_auth_service)):
    """Register a new user. No token is issued; the client logs in afterwards."""
    user = await auth.register(user_data.email, user_data.password, user_data.name)
    return RegisterResponse(user=_user_out(user))


@router.post("/auth/login", response_model=LoginResponse)
async def login_user(login_data: UserLogin, auth: AuthService = Depends(get_auth_service)):
    """Login user and return JWT token."""
    token, user = await auth.login(login_data.email, login_data.password)
    return LoginResponse(token=token, user=_user_out(user))


@router.get("/auth/me", response_model=CurrentUserResponse)
async def get_current_user_profile(
    user_id: uuid.UUID = Depends(get_current_user_id),
    auth: AuthService = Depends(get_auth_service),
):
    """Get the profile behind the bearer token."""
    user = await auth.get_user(user_id)
    return CurrentUserResponse(user=_user_out(user))


# --- Chat ---

async def persist_exchange(
    connector: DatabaseConnector,
    user_id: uuid.UUID,
    user_message: str,
    ai_message: str,
    timeout: float,
):
    """Background task run after the chat response has been sent."""
    result = await crud.append_exchange(connector, user_id, user_message, ai_message, timeout=timeout)
    if result.persisted:
        logger.info(f"Conversation updated for user {user_id}")
    else:
        logger.warning(f"Conversation not persisted for user {user_id}: {result.error}")


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    background_tasks: BackgroundTasks,
    user_id: Optional[uuid.UUID] = Depends(get_optional_user_id),
    gateway: AIGateway = Depends(get_gateway),
    connector: DatabaseConnector = Depends(get_connector),
    query_timeout: float = Depends(get_query_timeout),
):
    """Reply to the last user message; persist the exchange if the caller is signed in."""
    messages = request.messages
    if not messages or messages[-1].role != "user":
        raise ValidationError("Last message must be from user")

    ai_response = await gateway.generate_reply([m.model_dump() for m in messages])

    if user_id is not None:
        background_tasks.add_task(
            persist_exchange, connector, user_id, messages[-1].content, ai_response, query_timeout
        )
    return ChatResponse(message=ai_response)


@router.get("/chat/history", response_model=HistoryResponse)
async def chat_history(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    tokens: TokenManager = Depends(get_tokens),
    connector: DatabaseConnector = Depends(get_connector),
    query_timeout: float = Depends(get_query_timeout),
):
    """Stored transcript for the bearer's user. Always 200; any problem yields an empty list."""
    if credentials is None:
        return HistoryResponse()
    try:
        user_id = tokens.get_user_id_from_token(credentials.credentials)
    except AuthError as e:
        logger.warning(f"Chat history: invalid token: {e}")
        return HistoryResponse()

    messages = await crud.load_history(connector, user_id, timeout=query_timeout)
    return HistoryResponse(messages=messages)


# --- Models ---

@router.get("/models", response_model=ModelListResponse)
async def list_models(gateway: AIGateway = Depends(get_gateway)):
    """Models the configured API key can use for generateContent (or the static fallback list)."""
    return ModelListResponse(models=await gateway.list_available_models())
