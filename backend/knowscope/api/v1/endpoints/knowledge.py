"""Knowledge scope endpoints.

Routes the operator dashboard uses to list, inspect, override, edit and
delete tenant knowledge.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from knowscope.api.v1.dependencies import get_knowledge_service
from knowscope.schemas.knowledge import (
    KnowledgeContentUpdate,
    KnowledgeContext,
    KnowledgeGroupDetailResponse,
    KnowledgeItem,
    KnowledgeListResponse,
    KnowledgeOverrideCreate,
    ScopeLevel,
    TierDeletionResponse,
    VersionDeletionResponse,
)
from knowscope.services.knowledge_resolution import (
    available_override_targets,
    effective_item,
    override_chain,
    scope_stats,
)
from knowscope.services.knowledge_scope_service import KnowledgeScopeService


router = APIRouter()


def _context(tenant_id: str, agent_name: str, activation_name: Optional[str]) -> KnowledgeContext:
    return KnowledgeContext(
        tenant_id=tenant_id,
        agent_name=agent_name,
        activation_name=activation_name or None,
    )


@router.get("/{tenant_id}/knowledge", response_model=KnowledgeListResponse)
async def list_knowledge(
    tenant_id: str,
    agent_name: str = Query(..., alias="agentName", min_length=1),
    activation_name: Optional[str] = Query(None, alias="activationName"),
    service: KnowledgeScopeService = Depends(get_knowledge_service),
):
    groups = await service.list_groups(_context(tenant_id, agent_name, activation_name))
    return KnowledgeListResponse(groups=groups, stats=scope_stats(groups))


@router.get("/{tenant_id}/knowledge/groups/{name}", response_model=KnowledgeGroupDetailResponse)
async def get_knowledge_group(
    tenant_id: str,
    name: str,
    agent_name: str = Query(..., alias="agentName", min_length=1),
    activation_name: Optional[str] = Query(None, alias="activationName"),
    service: KnowledgeScopeService = Depends(get_knowledge_service),
):
    group = await service.get_group(_context(tenant_id, agent_name, activation_name), name)
    item, level = effective_item(group)
    return KnowledgeGroupDetailResponse(
        group=group,
        effective_level=level,
        effective_item_id=item.id,
        chain=override_chain(group),
        available_override_targets=available_override_targets(group, item),
    )


# Declared before /{item_id} so "versions" is not captured as an item id.
@router.delete("/{tenant_id}/knowledge/versions", response_model=TierDeletionResponse)
async def delete_all_versions(
    tenant_id: str,
    name: str = Query(..., min_length=1),
    level: ScopeLevel = Query(...),
    agent_name: str = Query(..., alias="agentName", min_length=1),
    activation_name: Optional[str] = Query(None, alias="activationName"),
    service: KnowledgeScopeService = Depends(get_knowledge_service),
):
    deleted = await service.delete_all_versions_at_tier(
        name=name,
        level=level,
        context=_context(tenant_id, agent_name, activation_name),
    )
    return TierDeletionResponse(name=name, level=level, deleted_count=deleted)


@router.get("/{tenant_id}/knowledge/{item_id}", response_model=KnowledgeItem)
async def get_knowledge_item(
    tenant_id: str,
    item_id: str,
    service: KnowledgeScopeService = Depends(get_knowledge_service),
):
    return await service.get_item(item_id, tenant_id)


@router.patch("/{tenant_id}/knowledge/{item_id}", response_model=KnowledgeItem)
async def update_knowledge_item(
    tenant_id: str,
    item_id: str,
    body: KnowledgeContentUpdate,
    service: KnowledgeScopeService = Depends(get_knowledge_service),
):
    return await service.edit_content(
        item_id=item_id,
        new_content=body.content,
        content_type=body.type,
        expected_version=body.version,
        tenant_id=tenant_id,
    )


@router.delete("/{tenant_id}/knowledge/{item_id}", response_model=VersionDeletionResponse)
async def delete_knowledge_version(
    tenant_id: str,
    item_id: str,
    service: KnowledgeScopeService = Depends(get_knowledge_service),
):
    return await service.delete_version(item_id, tenant_id)


@router.post(
    "/{tenant_id}/knowledge/{item_id}/override",
    response_model=KnowledgeItem,
    status_code=status.HTTP_201_CREATED,
)
async def create_knowledge_override(
    tenant_id: str,
    item_id: str,
    body: KnowledgeOverrideCreate,
    service: KnowledgeScopeService = Depends(get_knowledge_service),
):
    source = await service.get_item(item_id, tenant_id)
    context = _context(tenant_id, body.agent_name or source.agent, body.activation_name)
    return await service.create_override(source, body.target_level, context)
