"""
Authentication utilities for password hashing and JWT token management.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from passlib.context import CryptContext
from jose import JWTError, jwt
import logging

from chat_api.errors import AuthError

logger = logging.getLogger(__name__)


class TokenManager:
    """Hashes passwords and signs/verifies session tokens with one configured secret."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_days: int = 7, bcrypt_rounds: int = 10):
        if not secret_key:
            raise RuntimeError("A JWT signing secret is required")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_days = expire_days
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=bcrypt_rounds)

    @classmethod
    def from_settings(cls, settings) -> "TokenManager":
        return cls(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            expire_days=settings.token_expire_days,
            bcrypt_rounds=settings.bcrypt_rounds,
        )

    def get_password_hash(self, password: str) -> str:
        """Hash a password using bcrypt."""
        return self.pwd_context.hash(password)

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """Verify a password against its hash."""
        try:
            return self.pwd_context.verify(plain_password, hashed_password)
        except ValueError:
            # Malformed or unrecognised stored hash
            return False

    def create_access_token(self, user_id: uuid.UUID, email: str, expires_delta: Optional[timedelta] = None) -> str:
        """Create a signed token carrying the user id and email."""
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta if expires_delta is not None else timedelta(days=self.expire_days))
        to_encode = {
            "sub": str(user_id),
            "email": email,
            "iat": now,
            "exp": expire,
        }
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def decode_token(self, token: str) -> Dict[str, Any]:
        """Verify signature and expiry and return the claims."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            raise AuthError("Could not validate credentials") from e
        if not payload.get("sub"):
            raise AuthError("Could not validate credentials")
        return payload

    def get_user_id_from_token(self, token: str) -> uuid.UUID:
        """Extract user ID from JWT token."""
        payload = self.decode_token(token)
        try:
            return uuid.UUID(payload["sub"])
        except ValueError as e:
            raise AuthError("Invalid user ID in token") from e
