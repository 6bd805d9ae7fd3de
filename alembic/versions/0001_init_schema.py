"""Initial schema"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init_schema"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

campaign_status = sa.Enum(
    "draft", "provisioning", "active", "paused", "error", "completed", name="campaign_status"
)
provisioning_step_status = sa.Enum("succeeded", "failed", name="provisioning_step_status")
agent_type = sa.Enum(
    "competitor_analyst",
    "review_scout",
    "creative_director",
    "performance_monitor",
    "campaign_optimizer",
    name="agent_type",
)
agent_run_outcome = sa.Enum("completed", "needs_approval", "failed", name="agent_run_outcome")
lead_quality = sa.Enum("good", "bad", name="lead_quality")


def upgrade() -> None:
    op.create_table(
        "businesses",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("trade", sa.Text(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("country_code", sa.String(2), nullable=True),
        sa.Column("website_url", sa.Text(), nullable=True),
        sa.Column("facebook_access_token", sa.Text(), nullable=True),
        sa.Column("facebook_ad_account_id", sa.Text(), nullable=True),
        sa.Column("facebook_page_id", sa.Text(), nullable=True),
        sa.Column("facebook_pixel_id", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_businesses_user_id", "businesses", ["user_id"])

    op.create_table(
        "campaigns",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("business_id", sa.String(36), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("status", campaign_status, nullable=False),
        sa.Column("daily_budget_cents", sa.Integer(), nullable=False),
        sa.Column("targeting", JSONType, nullable=False),
        sa.Column("creatives", JSONType, nullable=False),
        sa.Column("platform_campaign_id", sa.Text(), nullable=True),
        sa.Column("platform_adset_id", sa.Text(), nullable=True),
        sa.Column("platform_ad_ids", JSONType, nullable=False),
        sa.Column("failed_step", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("warnings", JSONType, nullable=False),
        sa.Column("launched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_campaigns_business_status", "campaigns", ["business_id", "status"])
    op.create_index("idx_campaigns_status_updated_at", "campaigns", ["status", "updated_at"])

    op.create_table(
        "provisioning_steps",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("campaign_id", sa.String(36), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("step", sa.Text(), nullable=False),
        sa.Column("status", provisioning_step_status, nullable=False),
        sa.Column("external_id", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("campaign_id", "seq", name="uq_provisioning_steps_campaign_seq"),
    )

    op.create_table(
        "automation_configs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "business_id",
            sa.String(36),
            sa.ForeignKey("businesses.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("frequency_overrides_hours", JSONType, nullable=False),
        sa.Column("disabled_agents", JSONType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "agent_runs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("business_id", sa.String(36), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agent_type", agent_type, nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_outcome", agent_run_outcome, nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("business_id", "agent_type", name="uq_agent_runs_business_agent"),
    )

    op.create_table(
        "leads",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("business_id", sa.String(36), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("campaign_id", sa.String(36), sa.ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("platform_lead_id", sa.Text(), nullable=True),
        sa.Column("quality", lead_quality, nullable=True),
        sa.Column("quality_reported_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_leads_campaign", "leads", ["campaign_id"])


def downgrade() -> None:
    op.drop_index("idx_leads_campaign", table_name="leads")
    op.drop_table("leads")
    op.drop_table("agent_runs")
    op.drop_table("automation_configs")
    op.drop_table("provisioning_steps")
    op.drop_index("idx_campaigns_status_updated_at", table_name="campaigns")
    op.drop_index("idx_campaigns_business_status", table_name="campaigns")
    op.drop_table("campaigns")
    op.drop_index("ix_businesses_user_id", table_name="businesses")
    op.drop_table("businesses")

    bind = op.get_bind()
    for enum in (lead_quality, agent_run_outcome, agent_type, provisioning_step_status, campaign_status):
        enum.drop(bind, checkfirst=True)
