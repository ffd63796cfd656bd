"""Knowledge items.

One row per override slot: the current revision of one article (`name`) of one
agent template at one tier. Tier membership is stored as `scope_level` plus
the tenant/activation columns, and folded into `scope_key` so that the
database enforces at most one slot per (agent, name, tier scope).

Edits issue `max_revision + 1` as the new `revision`; a version delete lowers
`revision` but never `max_revision`, so a version token is never handed out
twice for one slot. Every revision's content is kept in
`knowledge_item_revisions` so a version delete can revert.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from knowscope.models.base import Base, TimestampMixin, UUIDMixin


class KnowledgeItem(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "knowledge_items"

    agent: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Agent template name this article belongs to",
    )

    name: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        doc="Logical article name, shared across tiers",
    )

    content_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="Content format (json/markdown/text), fixed at creation",
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        doc="Article body of the current revision",
    )

    revision: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        doc="Revision currently in effect; lowered by a version delete",
    )

    max_revision: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        doc="Highest revision ever issued for this slot; never lowered",
    )

    scope_level: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="Tier: system, tenant or activation",
    )

    tenant_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        doc="Owning tenant (tenant and activation tiers only)",
    )

    activation_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        doc="Agent instance name (activation tier only)",
    )

    scope_key: Mapped[str] = mapped_column(
        String(600),
        nullable=False,
        doc="Canonical tier key used for slot uniqueness",
    )

    created_by: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        doc="Author of the slot",
    )

    __table_args__ = (
        Index("ux_knowledge_items_agent_name_scope", "agent", "name", "scope_key", unique=True),
        Index("ix_knowledge_items_agent_tenant", "agent", "tenant_id"),
        CheckConstraint(
            "(scope_level = 'system' AND tenant_id IS NULL AND activation_name IS NULL)"
            " OR (scope_level = 'tenant' AND tenant_id IS NOT NULL AND activation_name IS NULL)"
            " OR (scope_level = 'activation' AND tenant_id IS NOT NULL AND activation_name IS NOT NULL)",
            name="scope_fields",
        ),
    )
