"""Shared dependencies for API v1 routes."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from knowscope.core.database import get_db
from knowscope.services.knowledge_scope_service import KnowledgeScopeService
from knowscope.services.knowledge_store import SqlKnowledgeRecordStore


async def get_knowledge_service(db: AsyncSession = Depends(get_db)) -> KnowledgeScopeService:
    """Knowledge scope service bound to the request's database session."""
    return KnowledgeScopeService(SqlKnowledgeRecordStore(db))
