"""
Registration and login on top of the user store.

Every data-layer call is raced against a timer; a timeout or driver error is
reported as DatabaseConnectionError with text the UI can show as-is.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Optional, Tuple, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from chat_api import crud
from chat_api.auth_utils import TokenManager
from chat_api.database import DatabaseConnector
from chat_api.errors import AuthError, ConflictError, DatabaseConnectionError, ValidationError
from chat_api.models import User

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_PASSWORD_LENGTH = 6
INVALID_CREDENTIALS = "Invalid email or password"


class AuthService:
    """Register users and exchange credentials for session tokens."""

    def __init__(self, connector: DatabaseConnector, tokens: TokenManager, query_timeout: float = 5.0):
        self.connector = connector
        self.tokens = tokens
        self.query_timeout = query_timeout

    async def _connect(self):
        try:
            await self.connector.acquire()
        except DatabaseConnectionError as e:
            logger.error(f"Database connection error: {e}")
            if e.is_timeout:
                message = "Database is temporarily unavailable. Please try again in a moment."
            else:
                message = "Unable to connect to database. Please check your connection and try again."
            raise DatabaseConnectionError(message, reason=e.reason) from e

    async def _query(self, operation: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self.query_timeout)
        except asyncio.TimeoutError as e:
            logger.error("Database query timeout")
            await self.connector.reset()
            raise DatabaseConnectionError(
                "Database is taking too long to respond. Please try again in a moment.", reason="timeout"
            ) from e
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Database query error: {e}")
            await self.connector.reset()
            raise DatabaseConnectionError("Database query failed. Please try again.", reason="other") from e

    async def register(self, email: Optional[str], password: Optional[str], name: Optional[str] = None) -> User:
        if not email or not password:
            raise ValidationError("Email and password are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        email = email.strip().lower()
        await self._connect()
        logger.info(f"Attempting to create user: {email}")

        async with self.connector.session() as db:
            # Check-then-create is not atomic; a concurrent duplicate is caught by
            # the unique index inside crud.create_user and surfaces as ConflictError.
            existing = await self._query(crud.get_user_by_email(db, email))
            if existing is not None:
                logger.info(f"User already exists: {email}")
                raise ConflictError("User with this email already exists")

            password_hash = self.tokens.get_password_hash(password)
            user = await self._query(crud.create_user(db, email, password_hash, name))

        logger.info(f"User created successfully: {user.id}")
        return user

    async def login(self, email: Optional[str], password: Optional[str]) -> Tuple[str, User]:
        if not email or not password:
            raise ValidationError("Email and password are required")

        await self._connect()
        async with self.connector.session() as db:
            user = await self._query(crud.get_user_by_email(db, email.strip().lower()))

        # Same message for an unknown email and a wrong password
        if user is None or not self.tokens.verify_password(password, user.password_hash):
            raise AuthError(INVALID_CREDENTIALS)

        token = self.tokens.create_access_token(user.id, user.email)
        logger.info(f"User logged in: {user.id}")
        return token, user

    async def get_user(self, user_id: uuid.UUID) -> User:
        await self._connect()
        async with self.connector.session() as db:
            user = await self._query(crud.get_user_by_id(db, user_id))
        if user is None:
            raise AuthError("User not found")
        return user
