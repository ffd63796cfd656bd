"""Knowledge record store.

`KnowledgeRecordStore` is the persistence contract the override engine relies
on. `SqlKnowledgeRecordStore` implements it on PostgreSQL:

- one row per tier slot in `knowledge_items`, unique on (agent, name, scope_key),
  so a lost insert race surfaces as KnowledgeConflictError;
- every revision's content in `knowledge_item_revisions` for rollback;
- each call runs in its own transaction, bounded by STORE_TIMEOUT_SECONDS.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, TypeVar, Union

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from knowscope.core.config import settings
from knowscope.core.exceptions import (
    KnowledgeConflictError,
    KnowledgeNotFoundError,
    StoreUnavailableError,
)
from knowscope.middleware.prometheus import knowledge_store_call_duration_seconds
from knowscope.models.base import utc_now
from knowscope.models.knowledge_item import KnowledgeItem as KnowledgeItemRow
from knowscope.models.knowledge_item_revision import KnowledgeItemRevision
from knowscope.schemas.knowledge import (
    ActivationScope,
    KnowledgeItem,
    ScopeLevel,
    SystemScope,
    TenantScope,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

AnyScope = Union[SystemScope, TenantScope, ActivationScope]


class KnowledgeRecordStore(ABC):
    """Persistence contract for knowledge items."""

    @abstractmethod
    async def list(
        self,
        tenant_id: str,
        agent_name: str,
        activation_name: Optional[str] = None,
    ) -> list[KnowledgeItem]:
        """All items visible to the context: system and tenant tiers, plus the activation's own."""

    @abstractmethod
    async def get(self, item_id: str) -> Optional[KnowledgeItem]:
        ...

    @abstractmethod
    async def insert(self, item: KnowledgeItem) -> KnowledgeItem:
        """Persist a new slot; KnowledgeConflictError if the slot is taken."""

    @abstractmethod
    async def update_content(
        self,
        item_id: str,
        content: str,
        expected_version: Optional[str] = None,
    ) -> KnowledgeItem:
        """
        Store `content` under a newly issued version, keeping the previous revision.

        Versions are never reissued for a slot, even after a revert. When
        `expected_version` is given and is no longer current,
        KnowledgeConflictError is raised and nothing is written.
        """

    @abstractmethod
    async def revert_to_previous(self, item_id: str) -> Optional[KnowledgeItem]:
        """
        Drop the current revision and restore the one before it.

        When the slot has no earlier revision it is deleted instead and None
        is returned.
        """

    @abstractmethod
    async def delete_one(self, item_id: str) -> None:
        ...

    @abstractmethod
    async def delete_by_name_and_tier(self, agent_name: str, name: str, scope: AnyScope) -> int:
        """Delete every record of (agent, name, exact scope); returns the count removed."""


def scope_from_columns(
    level: str,
    tenant_id: Optional[str],
    activation_name: Optional[str],
) -> AnyScope:
    level = ScopeLevel(level)
    if level == ScopeLevel.SYSTEM:
        return SystemScope()
    if level == ScopeLevel.TENANT:
        return TenantScope(tenant_id=tenant_id)
    return ActivationScope(tenant_id=tenant_id, activation_name=activation_name)


def _row_to_schema(row: KnowledgeItemRow) -> KnowledgeItem:
    return KnowledgeItem(
        id=row.id,
        name=row.name,
        type=row.content_type,
        content=row.content,
        version=str(row.revision),
        agent=row.agent,
        scope=scope_from_columns(row.scope_level, row.tenant_id, row.activation_name),
        created_at=row.created_at,
        updated_at=row.updated_at,
        created_by=row.created_by,
    )


def _revision_number(version: str) -> int:
    try:
        return int(version)
    except (TypeError, ValueError):
        raise ValueError(f"Unsupported version token: {version!r}") from None


class SqlKnowledgeRecordStore(KnowledgeRecordStore):
    """Record store backed by the `knowledge_items` tables."""

    def __init__(self, db: AsyncSession, timeout_seconds: Optional[float] = None):
        self.db = db
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.STORE_TIMEOUT_SECONDS

    async def _run(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        conflict_message: str = "A knowledge item already occupies this tier",
    ) -> T:
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout_seconds)
        except IntegrityError as exc:
            logger.info(f"Knowledge store uniqueness violation during {operation}: {exc.orig}")
            raise KnowledgeConflictError(
                conflict_message,
                details={"operation": operation},
            ) from exc
        except asyncio.TimeoutError as exc:
            logger.error(f"Knowledge store timed out during {operation} after {self.timeout_seconds}s")
            raise StoreUnavailableError(
                f"Knowledge store timed out during {operation}",
                details={"operation": operation},
            ) from exc
        except (OperationalError, DBAPIError, OSError) as exc:
            logger.error(f"Knowledge store unavailable during {operation}: {exc}")
            raise StoreUnavailableError(
                f"Knowledge store unavailable during {operation}",
                details={"operation": operation},
            ) from exc
        except SQLAlchemyError as exc:
            logger.exception(f"Knowledge store error during {operation}")
            raise StoreUnavailableError(
                f"Knowledge store failed during {operation}",
                details={"operation": operation},
            ) from exc
        finally:
            knowledge_store_call_duration_seconds.labels(operation=operation).observe(time.perf_counter() - start)

    async def _load(self, item_id: str, for_update: bool = False) -> KnowledgeItemRow:
        q = select(KnowledgeItemRow).where(KnowledgeItemRow.id == item_id)
        if for_update:
            q = q.with_for_update()
        row = await self.db.scalar(q)
        if not row:
            raise KnowledgeNotFoundError("Knowledge item not found", details={"item_id": item_id})
        return row

    async def list(
        self,
        tenant_id: str,
        agent_name: str,
        activation_name: Optional[str] = None,
    ) -> list[KnowledgeItem]:
        async def _list() -> list[KnowledgeItem]:
            async with self.db.begin():
                visible = [
                    KnowledgeItemRow.scope_level == ScopeLevel.SYSTEM.value,
                    and_(
                        KnowledgeItemRow.scope_level == ScopeLevel.TENANT.value,
                        KnowledgeItemRow.tenant_id == tenant_id,
                    ),
                ]
                if activation_name:
                    visible.append(
                        and_(
                            KnowledgeItemRow.scope_level == ScopeLevel.ACTIVATION.value,
                            KnowledgeItemRow.tenant_id == tenant_id,
                            KnowledgeItemRow.activation_name == activation_name,
                        )
                    )
                q = (
                    select(KnowledgeItemRow)
                    .where(KnowledgeItemRow.agent == agent_name, or_(*visible))
                    .order_by(KnowledgeItemRow.name, KnowledgeItemRow.scope_key)
                )
                result = await self.db.execute(q)
                return [_row_to_schema(r) for r in result.scalars().all()]

        return await self._run("list", _list)

    async def get(self, item_id: str) -> Optional[KnowledgeItem]:
        async def _get() -> Optional[KnowledgeItem]:
            async with self.db.begin():
                row = await self.db.scalar(select(KnowledgeItemRow).where(KnowledgeItemRow.id == item_id))
                return _row_to_schema(row) if row else None

        return await self._run("get", _get)

    async def insert(self, item: KnowledgeItem) -> KnowledgeItem:
        async def _insert() -> KnowledgeItem:
            async with self.db.begin():
                revision = _revision_number(item.version)
                row = KnowledgeItemRow(
                    id=item.id,
                    agent=item.agent,
                    name=item.name,
                    content_type=item.type,
                    content=item.content,
                    revision=revision,
                    max_revision=revision,
                    scope_level=item.level.value,
                    tenant_id=item.tenant_id,
                    activation_name=item.activation_name,
                    scope_key=item.scope.key,
                    created_by=item.created_by,
                    created_at=item.created_at,
                    updated_at=item.updated_at,
                )
                self.db.add(row)
                await self.db.flush()
                self.db.add(
                    KnowledgeItemRevision(
                        item_id=row.id,
                        revision=revision,
                        content=item.content,
                        created_by=item.created_by,
                    )
                )
                await self.db.flush()
                return _row_to_schema(row)

        return await self._run("insert", _insert)

    async def update_content(
        self,
        item_id: str,
        content: str,
        expected_version: Optional[str] = None,
    ) -> KnowledgeItem:
        async def _update() -> KnowledgeItem:
            async with self.db.begin():
                row = await self._load(item_id, for_update=True)
                if expected_version is not None and expected_version != str(row.revision):
                    raise KnowledgeConflictError(
                        "Knowledge item changed since it was loaded",
                        details={"item_id": item_id, "expected": expected_version, "current": str(row.revision)},
                    )
                revision = row.max_revision + 1
                row.max_revision = revision
                row.content = content
                row.revision = revision
                row.updated_at = utc_now()
                self.db.add(
                    KnowledgeItemRevision(
                        item_id=row.id,
                        revision=revision,
                        content=content,
                    )
                )
                await self.db.flush()
                return _row_to_schema(row)

        return await self._run(
            "update_content",
            _update,
            conflict_message="Knowledge item changed concurrently",
        )

    async def revert_to_previous(self, item_id: str) -> Optional[KnowledgeItem]:
        async def _revert() -> Optional[KnowledgeItem]:
            async with self.db.begin():
                row = await self._load(item_id, for_update=True)
                previous = await self.db.scalar(
                    select(KnowledgeItemRevision)
                    .where(
                        KnowledgeItemRevision.item_id == item_id,
                        KnowledgeItemRevision.revision < row.revision,
                    )
                    .order_by(KnowledgeItemRevision.revision.desc())
                    .limit(1)
                )
                if previous is None:
                    await self.db.execute(delete(KnowledgeItemRevision).where(KnowledgeItemRevision.item_id == item_id))
                    await self.db.delete(row)
                    await self.db.flush()
                    return None

                await self.db.execute(
                    delete(KnowledgeItemRevision).where(
                        KnowledgeItemRevision.item_id == item_id,
                        KnowledgeItemRevision.revision > previous.revision,
                    )
                )
                row.content = previous.content
                row.revision = previous.revision
                row.updated_at = previous.created_at
                await self.db.flush()
                return _row_to_schema(row)

        return await self._run("revert_to_previous", _revert)

    async def delete_one(self, item_id: str) -> None:
        async def _delete() -> None:
            async with self.db.begin():
                await self.db.execute(delete(KnowledgeItemRevision).where(KnowledgeItemRevision.item_id == item_id))
                await self.db.execute(delete(KnowledgeItemRow).where(KnowledgeItemRow.id == item_id))

        await self._run("delete_one", _delete)

    async def delete_by_name_and_tier(self, agent_name: str, name: str, scope: AnyScope) -> int:
        async def _delete() -> int:
            async with self.db.begin():
                ids = list(
                    (
                        await self.db.execute(
                            select(KnowledgeItemRow.id).where(
                                KnowledgeItemRow.agent == agent_name,
                                KnowledgeItemRow.name == name,
                                KnowledgeItemRow.scope_key == scope.key,
                            )
                        )
                    ).scalars().all()
                )
                if not ids:
                    return 0
                await self.db.execute(delete(KnowledgeItemRevision).where(KnowledgeItemRevision.item_id.in_(ids)))
                await self.db.execute(delete(KnowledgeItemRow).where(KnowledgeItemRow.id.in_(ids)))
                return len(ids)

        return await self._run("delete_by_name_and_tier", _delete)
