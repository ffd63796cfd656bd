"""
SQLAlchemy Models
=================

Database models for the knowledge record store.
"""

from knowscope.models.base import Base, TimestampMixin, UUIDMixin
from knowscope.models.knowledge_item import KnowledgeItem
from knowscope.models.knowledge_item_revision import KnowledgeItemRevision

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "KnowledgeItem",
    "KnowledgeItemRevision",
]
