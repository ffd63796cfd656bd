"""Knowledge scope schemas.

Tier membership is modelled as a discriminated union on `level`
(`SystemScope | TenantScope | ActivationScope`); the flat
`system_scoped` / `tenant_id` / `activation_name` fields clients expect are
derived from it, so an item can never claim two tiers at once.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import ConfigDict, Field, computed_field

from knowscope.core.exceptions import InvalidTransitionError
from knowscope.schemas.base import BaseSchema


class ScopeLevel(str, Enum):
    """Tier of a knowledge item, in increasing order of specificity."""

    SYSTEM = "system"
    TENANT = "tenant"
    ACTIVATION = "activation"

    @property
    def rank(self) -> int:
        return SCOPE_PRECEDENCE.index(self)


# Least specific first.
SCOPE_PRECEDENCE = (ScopeLevel.SYSTEM, ScopeLevel.TENANT, ScopeLevel.ACTIVATION)

SCOPE_LEVEL_LABELS = {
    ScopeLevel.SYSTEM: {"label": "System", "description": "Base system-level configuration"},
    ScopeLevel.TENANT: {"label": "Organization", "description": "Tenant-level override"},
    ScopeLevel.ACTIVATION: {"label": "Agent", "description": "Agent-specific override"},
}


class ContentType(str, Enum):
    """Format of an article body, fixed at item creation."""

    JSON = "json"
    MARKDOWN = "markdown"
    TEXT = "text"


class PermissionLevel(str, Enum):
    VIEW = "view"
    EDIT = "edit"


class SystemScope(BaseSchema):
    model_config = ConfigDict(frozen=True)

    level: Literal["system"] = "system"

    @property
    def key(self) -> str:
        return "system"


class TenantScope(BaseSchema):
    model_config = ConfigDict(frozen=True)

    level: Literal["tenant"] = "tenant"
    tenant_id: str = Field(..., min_length=1, max_length=255)

    @property
    def key(self) -> str:
        return f"tenant:{self.tenant_id}"


class ActivationScope(BaseSchema):
    model_config = ConfigDict(frozen=True)

    level: Literal["activation"] = "activation"
    tenant_id: str = Field(..., min_length=1, max_length=255)
    activation_name: str = Field(..., min_length=1, max_length=255)

    @property
    def key(self) -> str:
        return f"activation:{self.tenant_id}:{self.activation_name}"


Scope = Annotated[Union[SystemScope, TenantScope, ActivationScope], Field(discriminator="level")]


class KnowledgeItem(BaseSchema):
    """One stored version of one knowledge article at one tier."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=False)

    id: str
    name: str = Field(..., min_length=1, max_length=500)
    type: ContentType
    content: str
    version: str
    agent: str = Field(..., min_length=1, max_length=255)
    scope: Scope
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None

    @property
    def level(self) -> ScopeLevel:
        return ScopeLevel(self.scope.level)

    @computed_field
    @property
    def scope_level(self) -> ScopeLevel:
        return self.level

    @computed_field
    @property
    def system_scoped(self) -> bool:
        return self.level == ScopeLevel.SYSTEM

    @computed_field
    @property
    def tenant_id(self) -> Optional[str]:
        return getattr(self.scope, "tenant_id", None)

    @computed_field
    @property
    def activation_name(self) -> Optional[str]:
        return getattr(self.scope, "activation_name", None)

    @computed_field
    @property
    def permission_level(self) -> PermissionLevel:
        return PermissionLevel.VIEW if self.system_scoped else PermissionLevel.EDIT


class KnowledgeGroup(BaseSchema):
    """All tiers of one article name, as seen from one context."""

    model_config = ConfigDict(frozen=True)

    name: str
    system_scoped: Optional[KnowledgeItem] = None
    tenant_default: Optional[KnowledgeItem] = None
    activations: list[KnowledgeItem] = Field(default_factory=list)


class KnowledgeContext(BaseSchema):
    """Request context for listing and mutating knowledge."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(..., min_length=1, max_length=255)
    agent_name: str = Field(..., min_length=1, max_length=255)
    activation_name: Optional[str] = Field(None, min_length=1, max_length=255)

    def scope_for(self, level: ScopeLevel) -> Union[SystemScope, TenantScope, ActivationScope]:
        """Build the scope this context addresses at `level`."""
        level = ScopeLevel(level)
        if level == ScopeLevel.SYSTEM:
            return SystemScope()
        if level == ScopeLevel.TENANT:
            return TenantScope(tenant_id=self.tenant_id)
        if not self.activation_name:
            raise InvalidTransitionError(
                "activation_name is required to address the activation tier",
                details={"tenant_id": self.tenant_id, "agent_name": self.agent_name},
            )
        return ActivationScope(tenant_id=self.tenant_id, activation_name=self.activation_name)

    def can_see(self, item: KnowledgeItem) -> bool:
        """Whether `item` belongs to the records this context lists."""
        if item.agent != self.agent_name:
            return False
        if item.level == ScopeLevel.SYSTEM:
            return True
        if item.tenant_id != self.tenant_id:
            return False
        if item.level == ScopeLevel.ACTIVATION:
            return item.activation_name == self.activation_name
        return True


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class ScopeStats(BaseSchema):
    """Number of article groups per effective tier."""

    system_count: int = 0
    tenant_count: int = 0
    activation_count: int = 0


class KnowledgeListResponse(BaseSchema):
    groups: list[KnowledgeGroup]
    stats: ScopeStats


class OverrideChainNode(BaseSchema):
    level: ScopeLevel
    label: str
    item: Optional[KnowledgeItem] = None
    exists: bool
    is_active: bool
    is_overridden: bool


class KnowledgeGroupDetailResponse(BaseSchema):
    group: KnowledgeGroup
    effective_level: ScopeLevel
    effective_item_id: str
    chain: list[OverrideChainNode]
    available_override_targets: list[ScopeLevel]


class KnowledgeContentUpdate(BaseSchema):
    """Edit the content of an existing override."""

    model_config = ConfigDict(str_strip_whitespace=False)

    content: str
    type: ContentType
    version: Optional[str] = Field(
        None,
        description="Version the edit was based on; a mismatch is rejected as a conflict.",
    )


class KnowledgeOverrideCreate(BaseSchema):
    """Copy an item down into a more specific tier."""

    target_level: ScopeLevel = Field(..., alias="targetLevel")
    activation_name: Optional[str] = Field(None, alias="activationName", max_length=255)
    agent_name: Optional[str] = Field(
        None,
        alias="agentName",
        max_length=255,
        description="Defaults to the agent of the source item.",
    )


class VersionDeletionResponse(BaseSchema):
    item_id: str
    reverted: Optional[KnowledgeItem] = None
    tier_removed: bool
    deleted_count: int


class TierDeletionResponse(BaseSchema):
    name: str
    level: ScopeLevel
    deleted_count: int
