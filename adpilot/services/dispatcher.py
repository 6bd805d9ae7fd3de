"""Fire-and-forget dispatch of agent runs.

``AgentDispatcher.dispatch`` schedules the HTTP call as an asyncio task and
returns at once. Whatever goes wrong inside that task is logged and pushed to
a bounded failure queue; it never reaches the dispatch report of the cycle
that started it. The next cycle drains the queue onto ``AgentRun.last_error``
and lists those failures separately from its own counts.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adpilot.config import settings
from adpilot.db.enums import AgentTypeEnum, TriggerTypeEnum
from adpilot.db.repositories import AgentRunsRepository, AutomationConfigsRepository, CampaignsRepository
from adpilot.services.scheduler import AutomationScheduler

logger = logging.getLogger("automation.dispatch")


def agent_endpoint(agent_type: AgentTypeEnum) -> str:
    return agent_type.value.replace("_", "-")


@dataclass
class DispatchAck:
    business_id: str
    agent_type: AgentTypeEnum
    url: str
    dispatched_at: datetime


@dataclass
class DispatchFailure:
    business_id: str
    agent_type: AgentTypeEnum
    error: str
    status_code: Optional[int] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class DispatchResultItem:
    business_id: str
    business_name: str
    agent: Optional[str]
    status: str
    reason: Optional[str] = None


@dataclass
class DispatchReport:
    results: list[DispatchResultItem] = field(default_factory=list)
    message: Optional[str] = None
    # Background failures from earlier cycles, collected at the start of this one.
    previous_failures: list[DispatchFailure] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for item in self.results if item.status == status)

    @property
    def dispatched(self) -> int:
        return self.count("dispatched")

    @property
    def skipped(self) -> int:
        return self.count("skipped")

    @property
    def errors(self) -> int:
        return self.count("error")

    def to_dict(self) -> dict[str, Any]:
        message = self.message or (
            f"Dispatch complete. {self.dispatched} dispatched, {self.skipped} skipped, {self.errors} errors."
        )
        return {
            "message": message,
            "dispatched": self.dispatched,
            "skipped": self.skipped,
            "errors": self.errors,
            "results": [asdict(item) for item in self.results],
            "previous_dispatch_failures": [
                {
                    "business_id": failure.business_id,
                    "agent": failure.agent_type.value,
                    "status_code": failure.status_code,
                    "error": failure.error,
                    "occurred_at": failure.occurred_at.isoformat(),
                }
                for failure in self.previous_failures
            ],
        }


class AgentDispatcher:
    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 300.0,
        error_buffer: int = 200,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport
        self._tasks: set[asyncio.Task] = set()
        self._failures: asyncio.Queue[DispatchFailure] = asyncio.Queue(maxsize=error_buffer)

    @classmethod
    def from_settings(cls) -> "AgentDispatcher":
        return cls(
            base_url=settings.AGENT_BASE_URL,
            timeout_seconds=settings.AGENT_REQUEST_TIMEOUT_SECONDS,
            error_buffer=settings.AGENT_DISPATCH_ERROR_BUFFER,
        )

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def url_for(self, agent_type: AgentTypeEnum) -> str:
        return f"{self.base_url}/api/agents/{agent_endpoint(agent_type)}"

    def dispatch(
        self,
        *,
        business_id: str,
        user_id: str,
        agent_type: AgentTypeEnum,
        trigger_type: TriggerTypeEnum = TriggerTypeEnum.scheduled,
    ) -> DispatchAck:
        """Schedule one agent run. Must be called from inside a running event loop."""
        url = self.url_for(agent_type)
        body = {"business_id": business_id, "user_id": user_id, "trigger_type": trigger_type.value}
        task = asyncio.create_task(self._send(url, body, business_id=business_id, agent_type=agent_type))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return DispatchAck(
            business_id=business_id,
            agent_type=agent_type,
            url=url,
            dispatched_at=datetime.now(timezone.utc),
        )

    async def _send(self, url: str, body: dict[str, Any], *, business_id: str, agent_type: AgentTypeEnum) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=body)
        except httpx.HTTPError as exc:
            self._report_failure(DispatchFailure(business_id=business_id, agent_type=agent_type, error=str(exc)))
            return
        except Exception as exc:
            logger.exception(
                "Unexpected error dispatching agent",
                extra={"business_id": business_id, "agent_type": agent_type.value},
            )
            self._report_failure(
                DispatchFailure(business_id=business_id, agent_type=agent_type, error=str(exc) or repr(exc))
            )
            return
        if response.status_code >= 400:
            self._report_failure(
                DispatchFailure(
                    business_id=business_id,
                    agent_type=agent_type,
                    error=response.text[:500] or f"Agent endpoint returned {response.status_code}",
                    status_code=response.status_code,
                )
            )
            return
        logger.debug(
            "Agent run accepted",
            extra={"business_id": business_id, "agent_type": agent_type.value, "status": response.status_code},
        )

    def _report_failure(self, failure: DispatchFailure) -> None:
        logger.warning(
            "Agent dispatch failed",
            extra={
                "business_id": failure.business_id,
                "agent_type": failure.agent_type.value,
                "status": failure.status_code,
                "error": failure.error,
            },
        )
        try:
            self._failures.put_nowait(failure)
        except asyncio.QueueFull:
            logger.error(
                "Dispatch failure buffer full; dropping failure",
                extra={"business_id": failure.business_id, "agent_type": failure.agent_type.value},
            )

    def drain_failures(self) -> list[DispatchFailure]:
        failures: list[DispatchFailure] = []
        while True:
            try:
                failures.append(self._failures.get_nowait())
            except asyncio.QueueEmpty:
                return failures

    async def wait(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight dispatches; anything still pending after ``timeout`` is cancelled."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelled in-flight agent dispatches", extra={"count": len(pending)})
            await asyncio.gather(*pending, return_exceptions=True)


@lru_cache
def get_agent_dispatcher() -> AgentDispatcher:
    return AgentDispatcher.from_settings()


def collect_dispatch_failures(runs: AgentRunsRepository, dispatcher: AgentDispatcher) -> list[DispatchFailure]:
    """Empty the dispatcher's failure queue onto each agent run's ``last_error``."""
    failures = dispatcher.drain_failures()
    for failure in failures:
        try:
            runs.record_dispatch_failure(
                business_id=failure.business_id, agent_type=failure.agent_type, error=failure.error
            )
        except SQLAlchemyError:
            runs.session.rollback()
            logger.exception(
                "Failed to record agent dispatch failure",
                extra={"business_id": failure.business_id, "agent_type": failure.agent_type.value},
            )
    if failures:
        logger.info("Collected background dispatch failures", extra={"count": len(failures)})
    return failures


async def run_dispatch_cycle(
    session: Session,
    *,
    scheduler: AutomationScheduler,
    dispatcher: AgentDispatcher,
    now: Optional[datetime] = None,
) -> DispatchReport:
    runs = AgentRunsRepository(session)
    previous_failures = collect_dispatch_failures(runs, dispatcher)

    configs = AutomationConfigsRepository(session).list_enabled()
    if not configs:
        return DispatchReport(message="No businesses with automation enabled", previous_failures=previous_failures)

    campaigns = CampaignsRepository(session)
    report = DispatchReport(previous_failures=previous_failures)
    now = now or datetime.now(timezone.utc)

    for config in configs:
        business = config.business
        business_id = config.business_id
        if business is None or not business.user_id:
            logger.warning("Skipping automation config without an owner", extra={"business_id": business_id})
            continue
        business_name = business.name or business_id

        try:
            decisions = scheduler.evaluate(
                config,
                runs.last_runs(business_id),
                has_active_campaigns=campaigns.has_active_campaigns(business_id),
                now=now,
            )
        except Exception as exc:
            logger.exception("Failed to evaluate agent schedule", extra={"business_id": business_id})
            session.rollback()
            report.results.append(
                DispatchResultItem(
                    business_id=business_id,
                    business_name=business_name,
                    agent=None,
                    status="error",
                    reason=str(exc) or "Unknown error",
                )
            )
            continue

        for decision in decisions:
            agent = decision.agent_type.value
            if not decision.eligible:
                report.results.append(
                    DispatchResultItem(
                        business_id=business_id,
                        business_name=business_name,
                        agent=agent,
                        status="skipped",
                        reason=decision.reason,
                    )
                )
                continue
            try:
                ack = dispatcher.dispatch(
                    business_id=business_id, user_id=business.user_id, agent_type=decision.agent_type
                )
            except Exception as exc:
                logger.exception(
                    "Failed to dispatch agent", extra={"business_id": business_id, "agent_type": agent}
                )
                report.results.append(
                    DispatchResultItem(
                        business_id=business_id,
                        business_name=business_name,
                        agent=agent,
                        status="error",
                        reason=str(exc) or "Unknown error",
                    )
                )
                continue

            try:
                runs.mark_dispatched(
                    business_id=business_id, agent_type=decision.agent_type, dispatched_at=ack.dispatched_at
                )
            except SQLAlchemyError:
                session.rollback()
                logger.exception(
                    "Failed to record agent dispatch", extra={"business_id": business_id, "agent_type": agent}
                )
            report.results.append(
                DispatchResultItem(
                    business_id=business_id, business_name=business_name, agent=agent, status="dispatched"
                )
            )

    logger.info(
        "Agent dispatch cycle finished",
        extra={"dispatched": report.dispatched, "skipped": report.skipped, "errors": report.errors},
    )
    return report
