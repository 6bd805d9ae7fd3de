from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from adpilot.auth.dependencies import require_cron_secret
from adpilot.config import settings
from adpilot.db.deps import get_session
from adpilot.db.repositories import CampaignsRepository
from adpilot.schemas.campaigns import StuckCampaign
from adpilot.services.dispatcher import AgentDispatcher, get_agent_dispatcher, run_dispatch_cycle
from adpilot.services.scheduler import AutomationScheduler, get_automation_scheduler

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.post("/dispatch-agents")
async def dispatch_agents(
    session: Session = Depends(get_session),
    scheduler: AutomationScheduler = Depends(get_automation_scheduler),
    dispatcher: AgentDispatcher = Depends(get_agent_dispatcher),
) -> dict[str, Any]:
    report = await run_dispatch_cycle(session, scheduler=scheduler, dispatcher=dispatcher)
    return report.to_dict()


@router.get("/stuck-campaigns")
def list_stuck_campaigns(
    older_than_minutes: Optional[int] = Query(default=None, ge=0),
    session: Session = Depends(get_session),
) -> dict[str, Any]:
    minutes = settings.PROVISIONING_STUCK_AFTER_MINUTES if older_than_minutes is None else older_than_minutes
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
    campaigns = CampaignsRepository(session).list_stuck(updated_before=cutoff)
    return {
        "older_than_minutes": minutes,
        "campaigns": [StuckCampaign.model_validate(c).model_dump(mode="json") for c in campaigns],
    }
