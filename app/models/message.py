"""Collaboration log entries attached to milestones."""
from enum import Enum as PyEnum

from sqlalchemy import ForeignKey, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, value_enum


class MessageAuthor(str, PyEnum):
    SYSTEM = "system"
    USER = "user"


class MilestoneMessage(Base):
    """Append-only message in a milestone's collaboration log."""

    __tablename__ = "milestone_messages"

    milestone_id: Mapped[int] = mapped_column(ForeignKey("milestones.id"), nullable=False, index=True)
    author_kind: Mapped[MessageAuthor] = mapped_column(
        value_enum(MessageAuthor, "messageauthor"), nullable=False, default=MessageAuthor.SYSTEM
    )
    author_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(30), nullable=False)
    attachments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
