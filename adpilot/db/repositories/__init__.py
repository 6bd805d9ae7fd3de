from adpilot.db.repositories.agent_runs import AgentRunsRepository
from adpilot.db.repositories.automation_configs import AutomationConfigsRepository
from adpilot.db.repositories.businesses import BusinessesRepository
from adpilot.db.repositories.campaigns import CampaignsRepository
from adpilot.db.repositories.leads import LeadsRepository

__all__ = [
    "AgentRunsRepository",
    "AutomationConfigsRepository",
    "BusinessesRepository",
    "CampaignsRepository",
    "LeadsRepository",
]
