"""Agent event lifecycle — propose, confirm, and the deferred execution of staged actions.

States: draft -> awaiting_confirmation -> executed | error.

``confirm`` is the only path that executes anything. It claims the event
with a conditional update inside the same transaction as the executor's
writes, so concurrent confirms of one event execute at most once and the
losers see InvalidStateError. Failures mark the event ``error`` and are
re-raised to the caller unchanged.
"""

from collections.abc import Mapping
from typing import Any

from silenttray.errors import (
    InvalidStateError, NotFoundError, UnsupportedActionError, ValidationError,
)
from silenttray.models import AgentEvent, AgentEventStatus
from silenttray.observability import get_logger
from silenttray.router import ActionRouter, build_router
from silenttray.store import EntityStore

logger = get_logger(__name__)

_UNSET: Any = object()


class AgentEventMachine:
    """Owns status transitions of AgentEvent records."""

    def __init__(self, store: EntityStore, router: ActionRouter | None = None):
        self.store = store
        self.router = router or build_router(store)

    def propose(self, agent: str, payload: dict[str, Any], workspace_id: str) -> AgentEvent:
        """Stage a draft event; the action is derived from the agent name."""
        action = self.router.resolve_action(agent)
        event = self.store.insert_agent_event(AgentEvent(
            id="",
            workspace_id=workspace_id,
            agent=agent,
            action=action,
            input=payload,
            output=None,
            status=AgentEventStatus.DRAFT,
        ))
        logger.info("agent_event_proposed", event_id=event.id, agent=agent,
                    action=action, workspace_id=workspace_id)
        return event

    def create_draft(self, workspace_id: str, agent: str, action: str,
                     input: dict[str, Any] | None = None,
                     output: dict[str, Any] | None = None,
                     status: AgentEventStatus | str = AgentEventStatus.DRAFT) -> AgentEvent:
        """Create an event with an explicit action, optionally pre-set status/output."""
        return self.store.insert_agent_event(AgentEvent(
            id="",
            workspace_id=workspace_id,
            agent=agent,
            action=action,
            input=input,
            output=output,
            status=AgentEventStatus(status),
        ))

    def get(self, event_id: str) -> AgentEvent:
        event = self.store.get_agent_event(event_id)
        if event is None:
            raise NotFoundError(f"Agent event not found: {event_id}")
        return event

    def patch(self, event_id: str, status: AgentEventStatus | str | None = _UNSET,
              output: dict[str, Any] | None = _UNSET) -> AgentEvent:
        """Overwrite status and/or output with no transition checks.

        This is the administrative path (e.g. draft -> awaiting_confirmation).
        Passing ``output=None`` clears the output; omitting it leaves it alone.
        """
        changes: dict[str, Any] = {}
        if status is not _UNSET and status is not None:
            changes["status"] = AgentEventStatus(status)
        if output is not _UNSET:
            changes["output"] = output

        updated = self.store.patch_agent_event(event_id, changes)
        if updated is None:
            raise NotFoundError(f"Agent event with id {event_id} not found")
        logger.info("agent_event_patched", event_id=event_id, fields=sorted(changes))
        return updated

    def confirm(self, event_id: str) -> AgentEvent:
        """Execute an awaiting event's action and record the result."""
        event = self.get(event_id)
        if event.status is not AgentEventStatus.AWAITING_CONFIRMATION:
            raise InvalidStateError(
                f"Agent event {event_id} is not awaiting confirmation. "
                f"Current status: {event.status.value}"
            )

        claimed = False
        try:
            executor = self.router.resolve_executor(event.agent, event.action)
            if executor is None:
                raise UnsupportedActionError(
                    f"Unsupported agent action: {event.agent}/{event.action}"
                )
            payload = self._executor_payload(event)

            with self.store.transaction():
                claimed = self.store.transition_agent_event(
                    event_id,
                    expected=AgentEventStatus.AWAITING_CONFIRMATION,
                    status=AgentEventStatus.EXECUTED,
                )
                if claimed:
                    output = executor.execute(payload)
                    self.store.patch_agent_event(event_id, {"output": output})
        except Exception as exc:
            logger.warning("agent_event_failed", event_id=event_id, agent=event.agent,
                           action=event.action, error=str(exc),
                           error_type=type(exc).__name__)
            self._record_failure(event_id, exc)
            raise

        if not claimed:
            # Another confirm got there between our read and the claim.
            current = self.get(event_id)
            raise InvalidStateError(
                f"Agent event {event_id} is not awaiting confirmation. "
                f"Current status: {current.status.value}"
            )

        logger.info("agent_event_confirmed", event_id=event_id, agent=event.agent,
                    action=event.action)
        return self.get(event_id)

    def list(self, workspace_id: str,
             status: AgentEventStatus | str | None = None) -> list[AgentEvent]:
        """Events for a workspace, newest first, optionally filtered by status."""
        return self.store.list_agent_events(workspace_id, status)

    @staticmethod
    def _executor_payload(event: AgentEvent) -> Any:
        if event.input is None:
            raise ValidationError(f"No input data found for {event.agent}/{event.action}")
        if isinstance(event.input, Mapping):
            # Executors fall back to the owning workspace.
            return {"workspace_id": event.workspace_id, **event.input}
        return event.input

    def _record_failure(self, event_id: str, exc: Exception) -> None:
        """Best-effort write of the error state; never masks ``exc``."""
        message = str(exc) or type(exc).__name__
        try:
            written = self.store.transition_agent_event(
                event_id,
                expected=AgentEventStatus.AWAITING_CONFIRMATION,
                status=AgentEventStatus.ERROR,
                output={"error": message},
            )
        except Exception:
            logger.exception("agent_event_error_write_failed", event_id=event_id)
            return
        if not written:
            logger.warning("agent_event_error_write_skipped", event_id=event_id,
                           reason="event no longer awaiting confirmation")
