from enum import Enum


class CampaignStatusEnum(str, Enum):
    draft = "draft"
    provisioning = "provisioning"
    active = "active"
    paused = "paused"
    error = "error"
    completed = "completed"


class ProvisioningStepEnum(str, Enum):
    campaign = "campaign"
    adset = "adset"
    creative = "creative"
    ad = "ad"
    ads = "ads"
    activate_ads = "activate_ads"
    activate_adset = "activate_adset"
    activate_campaign = "activate_campaign"
    persist = "persist"


class StepStatusEnum(str, Enum):
    succeeded = "succeeded"
    failed = "failed"


class AgentTypeEnum(str, Enum):
    competitor_analyst = "competitor_analyst"
    review_scout = "review_scout"
    creative_director = "creative_director"
    performance_monitor = "performance_monitor"
    campaign_optimizer = "campaign_optimizer"


class AgentRunOutcomeEnum(str, Enum):
    completed = "completed"
    needs_approval = "needs_approval"
    failed = "failed"


class TriggerTypeEnum(str, Enum):
    scheduled = "scheduled"
    manual = "manual"
    event = "event"


class LeadQualityEnum(str, Enum):
    good = "good"
    bad = "bad"
