from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from adpilot.db.enums import AgentRunOutcomeEnum, AgentTypeEnum


class AgentRunReport(BaseModel):
    business_id: str
    agent_type: AgentTypeEnum
    outcome: AgentRunOutcomeEnum
    finished_at: Optional[datetime] = None
    error: Optional[str] = None


class AgentRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    business_id: str
    agent_type: AgentTypeEnum
    last_run_at: Optional[datetime] = None
    last_outcome: Optional[AgentRunOutcomeEnum] = None
    last_error: Optional[str] = None
    last_dispatched_at: Optional[datetime] = None
