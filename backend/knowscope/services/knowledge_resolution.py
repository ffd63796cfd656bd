"""Knowledge scope resolution.

Pure functions over snapshots of knowledge items:

- `project` groups a flat item list into one KnowledgeGroup per article name.
- `effective_item` / `effective_scope_level` pick the most specific tier.
- `available_override_targets`, `override_chain` and `scope_stats` derive the
  views the dashboard renders.

Nothing here touches the record store or keeps state between calls; callers
refetch and re-project after every write.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, Optional

from knowscope.core.exceptions import InvalidTransitionError, KnowledgeNotFoundError
from knowscope.schemas.knowledge import (
    SCOPE_LEVEL_LABELS,
    SCOPE_PRECEDENCE,
    KnowledgeGroup,
    KnowledgeItem,
    OverrideChainNode,
    ScopeLevel,
    ScopeStats,
)

logger = logging.getLogger(__name__)


def _freshest(name: str, slot: str, candidates: list[KnowledgeItem]) -> KnowledgeItem:
    if len(candidates) > 1:
        logger.warning(
            f"Multiple knowledge items share one tier slot: name={name} slot={slot} "
            f"ids={[c.id for c in candidates]}; keeping the most recently updated"
        )
    return max(candidates, key=lambda c: (c.updated_at, c.id))


def project(items: Iterable[KnowledgeItem]) -> list[KnowledgeGroup]:
    """
    Group knowledge items by article name.

    Groups are ordered by name and activations by activation name, so the
    same input always yields the same output. The input is not modified.
    """
    by_name: dict[str, dict[str, list[KnowledgeItem]]] = defaultdict(lambda: defaultdict(list))
    for item in items:
        by_name[item.name][item.scope.key].append(item)

    groups: list[KnowledgeGroup] = []
    for name in sorted(by_name):
        system_item: Optional[KnowledgeItem] = None
        tenant_item: Optional[KnowledgeItem] = None
        activations: list[KnowledgeItem] = []

        for slot, candidates in sorted(by_name[name].items()):
            chosen = _freshest(name, slot, candidates)
            if chosen.level == ScopeLevel.SYSTEM:
                system_item = chosen
            elif chosen.level == ScopeLevel.TENANT:
                if tenant_item is not None:
                    # Two tenants in one snapshot; the store scopes lists to one tenant.
                    logger.warning(f"Knowledge snapshot spans several tenants for name={name}")
                    chosen = max((tenant_item, chosen), key=lambda c: (c.updated_at, c.id))
                tenant_item = chosen
            else:
                activations.append(chosen)

        if tenant_item is not None and system_item is None:
            logger.warning(f"Tenant knowledge override without a system base: name={name}")

        activations.sort(key=lambda a: (a.activation_name or "", a.id))
        groups.append(
            KnowledgeGroup(
                name=name,
                system_scoped=system_item,
                tenant_default=tenant_item,
                activations=activations,
            )
        )
    return groups


def item_scope_level(item: KnowledgeItem) -> ScopeLevel:
    return item.level


def find_group(groups: Iterable[KnowledgeGroup], name: str) -> Optional[KnowledgeGroup]:
    for group in groups:
        if group.name == name:
            return group
    return None


def effective_item(group: KnowledgeGroup) -> tuple[KnowledgeItem, ScopeLevel]:
    """Return the item that wins for this group and the tier it came from."""
    if group.activations:
        return group.activations[0], ScopeLevel.ACTIVATION
    if group.tenant_default is not None:
        return group.tenant_default, ScopeLevel.TENANT
    if group.system_scoped is not None:
        return group.system_scoped, ScopeLevel.SYSTEM
    raise KnowledgeNotFoundError(
        f"No knowledge configured for '{group.name}' in this context",
        details={"name": group.name},
    )


def effective_scope_level(group: KnowledgeGroup) -> ScopeLevel:
    return effective_item(group)[1]


def item_in_tier(group: KnowledgeGroup, level: ScopeLevel) -> Optional[KnowledgeItem]:
    level = ScopeLevel(level)
    if level == ScopeLevel.SYSTEM:
        return group.system_scoped
    if level == ScopeLevel.TENANT:
        return group.tenant_default
    return group.activations[0] if group.activations else None


def check_override_transition(source: ScopeLevel, target: ScopeLevel) -> None:
    """Raise InvalidTransitionError unless `target` is strictly more specific than `source`."""
    source, target = ScopeLevel(source), ScopeLevel(target)
    if target.rank <= source.rank:
        raise InvalidTransitionError(
            f"Cannot override a {source.value} item at the {target.value} tier",
            details={"source_level": source.value, "target_level": target.value},
        )


def available_override_targets(group: KnowledgeGroup, item: KnowledgeItem) -> list[ScopeLevel]:
    """Tiers more specific than `item` that this group has not filled yet."""
    return [
        level
        for level in SCOPE_PRECEDENCE
        if level.rank > item_scope_level(item).rank and item_in_tier(group, level) is None
    ]


def override_chain(group: KnowledgeGroup) -> list[OverrideChainNode]:
    """Describe every tier of a group, least specific first."""
    try:
        active: Optional[ScopeLevel] = effective_scope_level(group)
    except KnowledgeNotFoundError:
        active = None

    nodes = []
    for level in SCOPE_PRECEDENCE:
        item = item_in_tier(group, level)
        nodes.append(
            OverrideChainNode(
                level=level,
                label=SCOPE_LEVEL_LABELS[level]["label"],
                item=item,
                exists=item is not None,
                is_active=level == active,
                is_overridden=item is not None and active is not None and level.rank < active.rank,
            )
        )
    return nodes


def scope_stats(groups: Iterable[KnowledgeGroup]) -> ScopeStats:
    counts = {level: 0 for level in SCOPE_PRECEDENCE}
    for group in groups:
        try:
            counts[effective_scope_level(group)] += 1
        except KnowledgeNotFoundError:
            continue
    return ScopeStats(
        system_count=counts[ScopeLevel.SYSTEM],
        tenant_count=counts[ScopeLevel.TENANT],
        activation_count=counts[ScopeLevel.ACTIVATION],
    )
