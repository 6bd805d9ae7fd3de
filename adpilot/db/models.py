from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from adpilot.db.base import Base
from adpilot.db.enums import (
    AgentRunOutcomeEnum,
    AgentTypeEnum,
    CampaignStatusEnum,
    LeadQualityEnum,
    StepStatusEnum,
)

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid4())


class Business(Base):
    __tablename__ = "businesses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    trade: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    country_code: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    website_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    facebook_access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    facebook_ad_account_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    facebook_page_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    facebook_pixel_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Campaign(Base):
    __tablename__ = "campaigns"
    __table_args__ = (
        sa.Index("idx_campaigns_business_status", "business_id", "status"),
        sa.Index("idx_campaigns_status_updated_at", "status", "updated_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    business_id: Mapped[str] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[CampaignStatusEnum] = mapped_column(
        Enum(CampaignStatusEnum, name="campaign_status"),
        nullable=False,
        default=CampaignStatusEnum.draft,
    )
    daily_budget_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    targeting: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    creatives: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)

    platform_campaign_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    platform_adset_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    platform_ad_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    failed_step: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    warnings: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)

    launched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    steps: Mapped[list["ProvisioningStep"]] = relationship(
        back_populates="campaign", order_by="ProvisioningStep.seq", lazy="selectin"
    )


class ProvisioningStep(Base):
    __tablename__ = "provisioning_steps"
    __table_args__ = (UniqueConstraint("campaign_id", "seq", name="uq_provisioning_steps_campaign_seq"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    campaign_id: Mapped[str] = mapped_column(ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    step: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[StepStatusEnum] = mapped_column(Enum(StepStatusEnum, name="provisioning_step_status"), nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    campaign: Mapped[Campaign] = relationship(back_populates="steps")


class AutomationConfig(Base):
    __tablename__ = "automation_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    business_id: Mapped[str] = mapped_column(
        ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # {"performance_monitor": 2, ...}; absent keys fall back to the scheduler defaults.
    frequency_overrides_hours: Mapped[dict[str, int]] = mapped_column(JSONType, nullable=False, default=dict)
    disabled_agents: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    business: Mapped[Business] = relationship(lazy="joined")


class AgentRun(Base):
    __tablename__ = "agent_runs"
    __table_args__ = (UniqueConstraint("business_id", "agent_type", name="uq_agent_runs_business_agent"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    business_id: Mapped[str] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    agent_type: Mapped[AgentTypeEnum] = mapped_column(Enum(AgentTypeEnum, name="agent_type"), nullable=False)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_outcome: Mapped[Optional[AgentRunOutcomeEnum]] = mapped_column(
        Enum(AgentRunOutcomeEnum, name="agent_run_outcome"), nullable=True
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class Lead(Base):
    __tablename__ = "leads"
    __table_args__ = (sa.Index("idx_leads_campaign", "campaign_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    business_id: Mapped[str] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    campaign_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    platform_lead_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quality: Mapped[Optional[LeadQualityEnum]] = mapped_column(Enum(LeadQualityEnum, name="lead_quality"), nullable=True)
    quality_reported_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
