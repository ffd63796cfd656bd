"""Knowledge scope service.

Owns the write side of the three-tier override hierarchy:

- create_override: copy an item down into a more specific tier
- edit_content: advance the version of a tenant/activation item
- delete_version: revert an item to its previous revision
- delete_all_versions_at_tier: drop one tier's override for one article

Every check runs before the store is touched, and every read goes back to the
store, so callers always see their own writes on the next list call.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from knowscope.core.config import settings
from knowscope.core.exceptions import (
    InvalidContentError,
    KnowledgeConflictError,
    KnowledgeNotFoundError,
    KnowledgeScopeError,
    ReadOnlyTierError,
)
from knowscope.middleware.prometheus import record_knowledge_write
from knowscope.models.base import generate_uuid, utc_now
from knowscope.schemas.knowledge import (
    ContentType,
    KnowledgeContext,
    KnowledgeGroup,
    KnowledgeItem,
    ScopeLevel,
    VersionDeletionResponse,
)
from knowscope.services.knowledge_resolution import (
    check_override_transition,
    find_group,
    item_in_tier,
    project,
)
from knowscope.services.knowledge_store import KnowledgeRecordStore

logger = logging.getLogger(__name__)

INITIAL_VERSION = "1"


def validate_content(content_type: ContentType, content: str) -> None:
    """Raise InvalidContentError if `content` breaks the rules of `content_type`."""
    if len(content) > settings.KNOWLEDGE_MAX_CONTENT_CHARS:
        raise InvalidContentError(
            f"Content exceeds {settings.KNOWLEDGE_MAX_CONTENT_CHARS} characters",
            details={"length": len(content)},
        )
    if ContentType(content_type) == ContentType.JSON:
        try:
            json.loads(content)
        except ValueError as exc:
            raise InvalidContentError(
                f"Content is not valid JSON: {exc}",
                details={"type": ContentType.JSON.value},
            ) from exc


def _ensure_writable(item: KnowledgeItem) -> None:
    if item.level == ScopeLevel.SYSTEM:
        raise ReadOnlyTierError(
            "System knowledge is read-only; create an override instead",
            details={"item_id": item.id, "name": item.name},
        )


class KnowledgeScopeService:
    """Resolve and mutate knowledge overrides through a record store."""

    def __init__(self, store: KnowledgeRecordStore):
        self.store = store

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_groups(self, context: KnowledgeContext) -> list[KnowledgeGroup]:
        items = await self.store.list(context.tenant_id, context.agent_name, context.activation_name)
        return project(items)

    async def get_group(self, context: KnowledgeContext, name: str) -> KnowledgeGroup:
        group = find_group(await self.list_groups(context), name)
        if group is None:
            raise KnowledgeNotFoundError(
                f"No knowledge configured for '{name}' in this context",
                details={"name": name, "agent_name": context.agent_name},
            )
        return group

    async def get_item(self, item_id: str, tenant_id: Optional[str] = None) -> KnowledgeItem:
        """Load one item; with `tenant_id`, items of other tenants are reported as missing."""
        item = await self.store.get(item_id)
        if item is None or (tenant_id is not None and item.tenant_id not in (None, tenant_id)):
            raise KnowledgeNotFoundError("Knowledge item not found", details={"item_id": item_id})
        return item

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_override(
        self,
        item: KnowledgeItem,
        target_level: ScopeLevel,
        context: KnowledgeContext,
        created_by: Optional[str] = None,
    ) -> KnowledgeItem:
        """Copy `item` into `target_level` for `context`; the source stays untouched."""
        target_level = ScopeLevel(target_level)
        try:
            check_override_transition(item.level, target_level)
            target_scope = context.scope_for(target_level)
            if not context.can_see(item):
                raise KnowledgeNotFoundError(
                    "Knowledge item is not visible in this context",
                    details={"item_id": item.id, "agent_name": context.agent_name},
                )

            group = find_group(await self.list_groups(context), item.name)
            existing = item_in_tier(group, target_level) if group else None
            if existing is not None:
                raise KnowledgeConflictError(
                    f"'{item.name}' already has a {target_level.value} override",
                    details={"name": item.name, "existing_id": existing.id},
                )

            now = utc_now()
            created = await self.store.insert(
                KnowledgeItem(
                    id=generate_uuid(),
                    name=item.name,
                    type=item.type,
                    content=item.content,
                    version=INITIAL_VERSION,
                    agent=item.agent,
                    scope=target_scope,
                    created_at=now,
                    updated_at=now,
                    created_by=created_by,
                )
            )
        except KnowledgeScopeError as exc:
            record_knowledge_write("create_override", exc.error_code)
            raise

        record_knowledge_write("create_override", "ok")
        logger.info(
            f"Created knowledge override: name={item.name} agent={item.agent} "
            f"from={item.level.value} to={target_level.value} id={created.id}"
        )
        return created

    async def create_override_by_id(
        self,
        item_id: str,
        target_level: ScopeLevel,
        context: KnowledgeContext,
        created_by: Optional[str] = None,
    ) -> KnowledgeItem:
        source = await self.get_item(item_id, context.tenant_id)
        return await self.create_override(source, target_level, context, created_by=created_by)

    async def edit_content(
        self,
        item_id: str,
        new_content: str,
        content_type: ContentType,
        expected_version: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> KnowledgeItem:
        """Replace the content of a tenant/activation item under a new version."""
        try:
            item = await self.get_item(item_id, tenant_id)
            _ensure_writable(item)
            if ContentType(content_type) != ContentType(item.type):
                raise InvalidContentError(
                    f"Content type is fixed at creation ({item.type}); got {ContentType(content_type).value}",
                    details={"item_id": item_id, "type": item.type},
                )
            validate_content(item.type, new_content)
            if expected_version is not None and expected_version != item.version:
                raise KnowledgeConflictError(
                    "Knowledge item changed since it was loaded",
                    details={"item_id": item_id, "expected": expected_version, "current": item.version},
                )

            # The store issues the new version and re-checks expected_version under its row lock.
            updated = await self.store.update_content(item_id, new_content, expected_version=expected_version)
        except KnowledgeScopeError as exc:
            record_knowledge_write("edit_content", exc.error_code)
            raise

        record_knowledge_write("edit_content", "ok")
        logger.info(
            f"Edited knowledge item: id={item_id} name={item.name} "
            f"version {item.version} -> {updated.version}"
        )
        return updated

    async def delete_version(self, item_id: str, tenant_id: Optional[str] = None) -> VersionDeletionResponse:
        """
        Revert an item to its previous version.

        A slot with a single version is removed, exposing the next less
        specific tier.
        """
        try:
            item = await self.get_item(item_id, tenant_id)
            _ensure_writable(item)
            reverted = await self.store.revert_to_previous(item_id)
        except KnowledgeScopeError as exc:
            record_knowledge_write("delete_version", exc.error_code)
            raise

        record_knowledge_write("delete_version", "ok")
        if reverted is None:
            logger.info(f"Deleted only version of knowledge item: id={item_id} name={item.name}")
            return VersionDeletionResponse(item_id=item_id, reverted=None, tier_removed=True, deleted_count=1)

        logger.info(
            f"Reverted knowledge item: id={item_id} name={item.name} "
            f"version {item.version} -> {reverted.version}"
        )
        return VersionDeletionResponse(item_id=item_id, reverted=reverted, tier_removed=False, deleted_count=1)

    async def delete_all_versions_at_tier(
        self,
        name: str,
        level: ScopeLevel,
        context: KnowledgeContext,
    ) -> int:
        """Remove the override of `name` at one tier of `context`; other tiers are untouched."""
        level = ScopeLevel(level)
        try:
            if level == ScopeLevel.SYSTEM:
                raise ReadOnlyTierError(
                    "System knowledge cannot be deleted",
                    details={"name": name},
                )
            scope = context.scope_for(level)
            deleted = await self.store.delete_by_name_and_tier(context.agent_name, name, scope)
        except KnowledgeScopeError as exc:
            record_knowledge_write("delete_all_versions", exc.error_code)
            raise

        record_knowledge_write("delete_all_versions", "ok")
        logger.info(
            f"Deleted knowledge tier: name={name} agent={context.agent_name} "
            f"scope={scope.key} deleted={deleted}"
        )
        return deleted
