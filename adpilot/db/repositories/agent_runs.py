from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from adpilot.db.enums import AgentRunOutcomeEnum, AgentTypeEnum
from adpilot.db.models import AgentRun


class AgentRunsRepository:
    """One row per (business, agent type); writes are upserts on that key."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, *, business_id: str, agent_type: AgentTypeEnum) -> Optional[AgentRun]:
        stmt = select(AgentRun).where(AgentRun.business_id == business_id, AgentRun.agent_type == agent_type)
        return self.session.scalars(stmt).first()

    def last_runs(self, business_id: str) -> dict[AgentTypeEnum, Optional[datetime]]:
        stmt = select(AgentRun).where(AgentRun.business_id == business_id)
        return {run.agent_type: run.last_run_at for run in self.session.scalars(stmt).all()}

    def _get_or_create(self, *, business_id: str, agent_type: AgentTypeEnum) -> AgentRun:
        run = self.get(business_id=business_id, agent_type=agent_type)
        if run is None:
            run = AgentRun(business_id=business_id, agent_type=agent_type)
            self.session.add(run)
        return run

    def mark_dispatched(
        self, *, business_id: str, agent_type: AgentTypeEnum, dispatched_at: Optional[datetime] = None
    ) -> AgentRun:
        run = self._get_or_create(business_id=business_id, agent_type=agent_type)
        run.last_dispatched_at = dispatched_at or datetime.now(timezone.utc)
        self.session.commit()
        self.session.refresh(run)
        return run

    def record_dispatch_failure(self, *, business_id: str, agent_type: AgentTypeEnum, error: str) -> AgentRun:
        # Outcome and window stay as the agent last reported them.
        run = self._get_or_create(business_id=business_id, agent_type=agent_type)
        run.last_error = error
        self.session.commit()
        self.session.refresh(run)
        return run

    def record_outcome(
        self,
        *,
        business_id: str,
        agent_type: AgentTypeEnum,
        outcome: AgentRunOutcomeEnum,
        finished_at: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> AgentRun:
        run = self._get_or_create(business_id=business_id, agent_type=agent_type)
        run.last_outcome = outcome
        run.last_error = error
        # Failed runs do not close the frequency window.
        if outcome != AgentRunOutcomeEnum.failed:
            run.last_run_at = finished_at or datetime.now(timezone.utc)
        self.session.commit()
        self.session.refresh(run)
        return run
