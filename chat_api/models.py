"""
SQLAlchemy ORM models for users and their single running conversation.
"""

import uuid
from sqlalchemy import (
    Column,
    UUID as UUID_TYPE,
    String,
    DateTime,
    func,
    ForeignKey,
    Text,
    Integer,
    CheckConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class User(Base):
    """
    A registered account. Email is stored lowercased and is unique.
    """
    __tablename__ = 'users'
    id = Column(UUID_TYPE(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(150), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Conversation(Base):
    """
    The one conversation owned by a user. Created on the first persisted exchange.
    """
    __tablename__ = 'conversations'
    id = Column(UUID_TYPE(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID_TYPE(as_uuid=True), ForeignKey('users.id'), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User")
    messages = relationship(
        "ChatMessage",
        back_populates="conversation",
        order_by="ChatMessage.id",
    )


class ChatMessage(Base):
    """
    A single message within a conversation. Insertion order is message order.
    """
    __tablename__ = 'chat_messages'
    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(UUID_TYPE(as_uuid=True), ForeignKey('conversations.id'), nullable=False, index=True)
    role = Column(String(10), nullable=False)  # 'user' or 'ai'
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("role IN ('user', 'ai')", name='check_role'),
    )

    conversation = relationship("Conversation", back_populates="messages")
