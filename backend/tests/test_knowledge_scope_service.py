import pytest

from knowscope.core.exceptions import (
    InvalidContentError,
    InvalidTransitionError,
    KnowledgeConflictError,
    KnowledgeNotFoundError,
    ReadOnlyTierError,
    StoreUnavailableError,
)
from knowscope.middleware.prometheus import metrics_registry
from knowscope.schemas.knowledge import ContentType, KnowledgeContext, ScopeLevel
from knowscope.services.knowledge_resolution import effective_item, effective_scope_level
from knowscope.services.knowledge_scope_service import validate_content

TENANT_ID = "tenant-acme"
OTHER_TENANT_ID = "tenant-globex"
AGENT = "support-bot"


def _ctx(activation_name=None):
    return KnowledgeContext(tenant_id=TENANT_ID, agent_name=AGENT, activation_name=activation_name)


def _writes(operation, outcome):
    return metrics_registry.get_sample_value(
        "knowledge_writes_total", {"operation": operation, "outcome": outcome}
    ) or 0.0


def test_validate_content_rejects_malformed_json():
    validate_content(ContentType.JSON, '{"a": 1}')
    validate_content(ContentType.MARKDOWN, "{not valid json")
    with pytest.raises(InvalidContentError):
        validate_content(ContentType.JSON, "{not valid json")


def test_context_requires_activation_name_for_activation_tier():
    with pytest.raises(InvalidTransitionError):
        _ctx().scope_for(ScopeLevel.ACTIVATION)


@pytest.mark.asyncio
async def test_list_groups_hides_other_tenants_and_activations(service, store, make_item):
    store.seed(make_item(level="system"))
    store.seed(make_item(level="tenant", tenant_id=OTHER_TENANT_ID))
    store.seed(make_item(level="activation", activation_name="west"))
    mine = store.seed(make_item(level="activation", activation_name="east"))

    groups = await service.list_groups(_ctx("east"))

    assert len(groups) == 1
    assert groups[0].tenant_default is None
    assert [a.id for a in groups[0].activations] == [mine.id]


@pytest.mark.asyncio
async def test_list_groups_without_activation_returns_system_and_tenant_only(service, store, make_item):
    store.seed(make_item(level="system"))
    store.seed(make_item(level="tenant"))
    store.seed(make_item(level="activation", activation_name="east"))

    group = (await service.list_groups(_ctx()))[0]

    assert group.activations == []
    assert effective_scope_level(group) == ScopeLevel.TENANT


@pytest.mark.asyncio
async def test_get_group_unknown_name_raises_not_found(service):
    with pytest.raises(KnowledgeNotFoundError):
        await service.get_group(_ctx(), "missing")


@pytest.mark.asyncio
async def test_get_item_of_other_tenant_is_not_found(service, store, make_item):
    foreign = store.seed(make_item(level="tenant", tenant_id=OTHER_TENANT_ID))
    system = store.seed(make_item(level="system"))

    with pytest.raises(KnowledgeNotFoundError):
        await service.get_item(foreign.id, TENANT_ID)
    assert (await service.get_item(system.id, TENANT_ID)).id == system.id


@pytest.mark.asyncio
async def test_override_system_to_activation_then_resolves_to_copy(service, store, make_item):
    system = store.seed(make_item(level="system", content="Base policy"))

    created = await service.create_override(system, ScopeLevel.ACTIVATION, _ctx("east"), created_by="ops@acme")

    group = await service.get_group(_ctx("east"), "policy")
    item, level = effective_item(group)
    assert level == ScopeLevel.ACTIVATION
    assert item.id == created.id != system.id
    assert item.content == system.content
    assert item.version == "1"
    assert item.type == system.type
    assert item.created_by == "ops@acme"
    assert store.items[system.id] == system


@pytest.mark.asyncio
async def test_override_into_occupied_tier_raises_conflict(service, store, make_item):
    system = store.seed(make_item(level="system"))
    existing = store.seed(make_item(level="tenant", content="Tenant policy"))
    before = _writes("create_override", "CONFLICT")

    with pytest.raises(KnowledgeConflictError):
        await service.create_override(system, ScopeLevel.TENANT, _ctx())

    assert store.items[existing.id] == existing
    assert len(store.items) == 2
    assert _writes("create_override", "CONFLICT") == before + 1


@pytest.mark.asyncio
async def test_override_race_lost_at_insert_surfaces_conflict(service, store, make_item, monkeypatch):
    system = store.seed(make_item(level="system"))
    rival = make_item(level="tenant")
    original_insert = store.insert

    async def _insert_after_rival(item):
        store.seed(rival)
        return await original_insert(item)

    monkeypatch.setattr(store, "insert", _insert_after_rival)

    with pytest.raises(KnowledgeConflictError):
        await service.create_override(system, ScopeLevel.TENANT, _ctx())
    assert store.items[rival.id] == rival


@pytest.mark.asyncio
async def test_override_toward_general_tier_is_rejected_before_store_write(service, store, make_item):
    tenant = store.seed(make_item(level="tenant"))

    with pytest.raises(InvalidTransitionError):
        await service.create_override(tenant, ScopeLevel.SYSTEM, _ctx())
    assert "insert" not in store.calls


@pytest.mark.asyncio
async def test_override_of_item_outside_context_is_not_found(service, store, make_item):
    foreign = store.seed(make_item(level="tenant", tenant_id=OTHER_TENANT_ID))

    with pytest.raises(KnowledgeNotFoundError):
        await service.create_override(foreign, ScopeLevel.ACTIVATION, _ctx("east"))


@pytest.mark.asyncio
async def test_edit_content_advances_version(service, store, make_item):
    tenant = store.seed(make_item(level="tenant", type="json", content='{"days": 30}'))

    updated = await service.edit_content(tenant.id, '{"days": 45}', ContentType.JSON, expected_version="1")

    assert updated.id == tenant.id
    assert updated.version == "2"
    assert updated.content == '{"days": 45}'


@pytest.mark.asyncio
async def test_edit_system_item_raises_read_only_and_leaves_item(service, store, make_item):
    system = store.seed(make_item(level="system"))

    with pytest.raises(ReadOnlyTierError):
        await service.edit_content(system.id, "changed", ContentType.MARKDOWN)

    assert store.items[system.id].content == system.content
    assert store.items[system.id].version == "1"


@pytest.mark.asyncio
async def test_edit_json_item_with_malformed_json_does_not_advance_version(service, store, make_item):
    item = store.seed(make_item(level="tenant", type="json", content='{"days": 30}'))

    with pytest.raises(InvalidContentError):
        await service.edit_content(item.id, "{not valid json", ContentType.JSON)

    assert store.items[item.id].version == "1"
    assert "update_content" not in store.calls


@pytest.mark.asyncio
async def test_edit_cannot_change_content_type(service, store, make_item):
    item = store.seed(make_item(level="tenant", type="markdown"))

    with pytest.raises(InvalidContentError):
        await service.edit_content(item.id, "{}", ContentType.JSON)


@pytest.mark.asyncio
async def test_edit_with_stale_version_raises_conflict(service, store, make_item):
    item = store.seed(make_item(level="tenant", version="3"))

    with pytest.raises(KnowledgeConflictError):
        await service.edit_content(item.id, "new", ContentType.MARKDOWN, expected_version="2")
    assert store.items[item.id].version == "3"


@pytest.mark.asyncio
async def test_version_token_is_not_reissued_after_delete_version(service, store, make_item):
    item = store.seed(make_item(level="tenant", content="v1"))

    first = await service.edit_content(item.id, "A", ContentType.MARKDOWN, expected_version="1")
    reverted = (await service.delete_version(item.id)).reverted
    second = await service.edit_content(item.id, "B", ContentType.MARKDOWN, expected_version="1")

    assert (first.version, reverted.version, second.version) == ("2", "1", "3")

    with pytest.raises(KnowledgeConflictError):
        await service.edit_content(item.id, "stale write", ContentType.MARKDOWN, expected_version=first.version)
    assert store.items[item.id].content == "B"
    assert store.items[item.id].version == "3"


@pytest.mark.asyncio
async def test_store_rechecks_expected_version_when_edit_races(service, store, make_item, monkeypatch):
    item = store.seed(make_item(level="tenant", content="v1"))
    original_update = store.update_content

    async def _update_after_rival(item_id, content, expected_version=None):
        await original_update(item_id, "rival", expected_version=None)
        return await original_update(item_id, content, expected_version=expected_version)

    monkeypatch.setattr(store, "update_content", _update_after_rival)

    with pytest.raises(KnowledgeConflictError):
        await service.edit_content(item.id, "mine", ContentType.MARKDOWN, expected_version="1")
    assert store.items[item.id].content == "rival"
    assert store.items[item.id].version == "2"


@pytest.mark.asyncio
async def test_delete_version_reverts_to_previous_content(service, store, make_item):
    item = store.seed(make_item(level="tenant", content="v1"))
    await service.edit_content(item.id, "v2", ContentType.MARKDOWN)

    result = await service.delete_version(item.id)

    assert result.tier_removed is False
    assert result.reverted.version == "1"
    assert result.reverted.content == "v1"


@pytest.mark.asyncio
async def test_delete_only_version_removes_slot_and_exposes_system(service, store, make_item):
    store.seed(make_item(level="system"))
    tenant = store.seed(make_item(level="tenant"))

    result = await service.delete_version(tenant.id)

    assert result.tier_removed is True
    assert result.reverted is None
    group = await service.get_group(_ctx(), "policy")
    assert effective_scope_level(group) == ScopeLevel.SYSTEM


@pytest.mark.asyncio
async def test_delete_version_of_system_item_is_read_only(service, store, make_item):
    system = store.seed(make_item(level="system"))

    with pytest.raises(ReadOnlyTierError):
        await service.delete_version(system.id)
    assert system.id in store.items


@pytest.mark.asyncio
async def test_delete_all_versions_at_activation_tier_only_touches_that_activation(service, store, make_item):
    store.seed(make_item(level="system"))
    tenant = store.seed(make_item(level="tenant"))
    east = store.seed(make_item(level="activation", activation_name="east"))
    west = store.seed(make_item(level="activation", activation_name="west"))

    deleted = await service.delete_all_versions_at_tier("policy", ScopeLevel.ACTIVATION, _ctx("east"))

    assert deleted == 1
    assert east.id not in store.items
    assert store.items[west.id] == west
    assert store.items[tenant.id] == tenant


@pytest.mark.asyncio
async def test_delete_all_versions_at_system_tier_is_read_only(service, store, make_item):
    system = store.seed(make_item(level="system"))

    with pytest.raises(ReadOnlyTierError):
        await service.delete_all_versions_at_tier("policy", ScopeLevel.SYSTEM, _ctx())
    assert system.id in store.items


@pytest.mark.asyncio
async def test_delete_all_versions_at_activation_tier_needs_activation_name(service, store, make_item):
    store.seed(make_item(level="activation", activation_name="east"))

    with pytest.raises(InvalidTransitionError):
        await service.delete_all_versions_at_tier("policy", ScopeLevel.ACTIVATION, _ctx())


@pytest.mark.asyncio
async def test_store_outage_is_reported_as_retryable(service, store, make_item):
    system = store.seed(make_item(level="system"))
    store.unavailable = True

    with pytest.raises(StoreUnavailableError) as exc_info:
        await service.create_override(system, ScopeLevel.TENANT, _ctx())
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_policy_override_and_tier_deletion_round_trip(service, store, make_item):
    system = store.seed(make_item(name="policy", level="system", content="System policy"))

    group = await service.get_group(_ctx(), "policy")
    assert effective_scope_level(group) == ScopeLevel.SYSTEM
    assert group.tenant_default is None and group.activations == []

    tenant = await service.create_override(system, ScopeLevel.TENANT, _ctx())
    group = await service.get_group(_ctx(), "policy")
    assert effective_scope_level(group) == ScopeLevel.TENANT
    assert group.tenant_default.id == tenant.id != system.id
    assert group.tenant_default.content == "System policy"

    assert await service.delete_all_versions_at_tier("policy", ScopeLevel.TENANT, _ctx()) == 1
    group = await service.get_group(_ctx(), "policy")
    assert effective_scope_level(group) == ScopeLevel.SYSTEM
    assert group.system_scoped == system
    assert group.tenant_default is None
