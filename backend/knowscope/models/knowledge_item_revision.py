"""Knowledge item revisions.

Append-only content history of a knowledge item slot (for rollback).
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from knowscope.models.base import Base, TimestampMixin, UUIDMixin


class KnowledgeItemRevision(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "knowledge_item_revisions"

    item_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("knowledge_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="Parent knowledge item",
    )

    revision: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="Revision number within the item",
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="Full content of this revision",
    )

    created_by: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        doc="Author of this revision",
    )

    __table_args__ = (
        Index("ux_knowledge_item_revisions_item_rev", "item_id", "revision", unique=True),
    )
