"""
CRUD operations for users and the per-user conversation record.

The conversation helpers are best-effort: `append_exchange` reports failure
through a `PersistResult` instead of raising, and `load_history` degrades to an
empty history, so storage trouble never costs the user a generated answer.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chat_api.database import DatabaseConnector
from chat_api.errors import ConflictError
from chat_api.models import ChatMessage, Conversation, User

logger = logging.getLogger(__name__)

QUERY_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class PersistResult:
    """Outcome of a best-effort conversation write."""

    persisted: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "PersistResult":
        return cls(persisted=True)

    @classmethod
    def failed(cls, error: str) -> "PersistResult":
        return cls(persisted=False, error=error)


# --- Users ---

async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def create_user(db: AsyncSession, email: str, password_hash: str, name: Optional[str] = None) -> User:
    """
    Insert a user and commit. A duplicate email that slipped past the caller's
    existence check is rejected by the unique index and reported as ConflictError.
    """
    user = User(email=email.lower(), password_hash=password_hash, name=name or "")
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning(f"Unique constraint rejected user creation for {email.lower()}")
        raise ConflictError("User with this email already exists") from e
    return user


async def count_users(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(User))
    return result.scalar_one()


async def list_users(db: AsyncSession, limit: int = 10) -> List[User]:
    result = await db.execute(select(User).order_by(User.created_at).limit(limit))
    return list(result.scalars().all())


# --- Conversations ---

async def get_conversation_for_user(db: AsyncSession, user_id: uuid.UUID) -> Optional[Conversation]:
    result = await db.execute(select(Conversation).where(Conversation.user_id == user_id))
    return result.scalar_one_or_none()


async def get_message_history(db: AsyncSession, conversation_id: uuid.UUID) -> List[ChatMessage]:
    """Gets all messages for a conversation, in the order they were appended."""
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.id)
    )
    return list(result.scalars().all())


async def _append_exchange(db: AsyncSession, user_id: uuid.UUID, user_message: str, ai_message: str):
    conversation = await get_conversation_for_user(db, user_id)
    if conversation is None:
        conversation = Conversation(user_id=user_id)
        db.add(conversation)
        await db.flush()

    # Both rows go in with one commit; the user message is flushed first so it gets the lower id.
    db.add(ChatMessage(conversation_id=conversation.id, role="user", content=user_message))
    await db.flush()
    db.add(ChatMessage(conversation_id=conversation.id, role="ai", content=ai_message))
    conversation.updated_at = datetime.now(timezone.utc)
    await db.commit()


async def append_exchange(
    connector: DatabaseConnector,
    user_id: uuid.UUID,
    user_message: str,
    ai_message: str,
    timeout: float = QUERY_TIMEOUT_SECONDS,
) -> PersistResult:
    """Append one user/AI message pair to the user's conversation, creating it if needed."""

    async def write():
        # Closing the session rolls back anything left uncommitted.
        async with connector.session() as db:
            await _append_exchange(db, user_id, user_message, ai_message)

    try:
        await asyncio.wait_for(write(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Timed out persisting conversation for user {user_id}")
        return PersistResult.failed("timeout")
    except Exception as e:
        logger.error(f"Failed to persist conversation for user {user_id}: {e}")
        return PersistResult.failed(str(e) or e.__class__.__name__)
    return PersistResult.ok()


async def load_history(
    connector: DatabaseConnector,
    user_id: uuid.UUID,
    timeout: float = QUERY_TIMEOUT_SECONDS,
) -> List[Dict[str, str]]:
    """Return the user's stored messages as role/content pairs, or [] if none or on error."""

    async def read():
        async with connector.session() as db:
            conversation = await get_conversation_for_user(db, user_id)
            if conversation is None:
                return []
            messages = await get_message_history(db, conversation.id)
            return [{"role": m.role, "content": m.content} for m in messages]

    try:
        return await asyncio.wait_for(read(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Timed out loading chat history for user {user_id}")
    except Exception as e:
        logger.error(f"Failed to load chat history for user {user_id}: {e}")
    return []
