from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from adpilot.auth.dependencies import require_cron_secret
from adpilot.db.deps import get_session
from adpilot.db.repositories import AgentRunsRepository, BusinessesRepository
from adpilot.schemas.automation import AgentRunReport, AgentRunResponse

router = APIRouter(prefix="/agent-runs", tags=["agent-runs"], dependencies=[Depends(require_cron_secret)])


@router.post("", response_model=AgentRunResponse)
def report_agent_run(payload: AgentRunReport, session: Session = Depends(get_session)):
    if not BusinessesRepository(session).get(payload.business_id):
        raise HTTPException(status_code=404, detail="Business not found")
    run = AgentRunsRepository(session).record_outcome(
        business_id=payload.business_id,
        agent_type=payload.agent_type,
        outcome=payload.outcome,
        finished_at=payload.finished_at,
        error=payload.error,
    )
    return AgentRunResponse.model_validate(run)
