"""Action routing — agent name to action name, and (agent, action) to executor."""

from collections.abc import Mapping

from silenttray.calendar import CalendarClient
from silenttray.executors import Executor, ExecutorKind, build_executor
from silenttray.store import EntityStore

FALLBACK_ACTION = "propose_action"

AGENT_ACTIONS: dict[str, str] = {
    "NoteTakingAgent": "create_note",
    "TaskAgent": "create_task",
    "SchedulerAgent": "create_calendar_event",
    "KnowledgeAgent": "extract_knowledge",
}

# Closed allow-list of executable pairs; nothing else can be confirmed.
DEFAULT_EXECUTORS: dict[tuple[str, str], ExecutorKind] = {
    ("TaskAgent", "create_task"): ExecutorKind.CREATE_TASK,
    ("NoteAgent", "update_note"): ExecutorKind.UPDATE_NOTE,
    ("NoteTakingAgent", "create_note"): ExecutorKind.CREATE_NOTE,
    ("SchedulerAgent", "create_calendar_event"): ExecutorKind.CREATE_CALENDAR_EVENT,
}


class ActionRouter:
    """Resolves canonical actions at proposal time and executors at confirm time."""

    def __init__(self, agent_actions: Mapping[str, str] = AGENT_ACTIONS,
                 executors: Mapping[tuple[str, str], Executor] | None = None,
                 fallback_action: str = FALLBACK_ACTION):
        self.agent_actions = dict(agent_actions)
        self.fallback_action = fallback_action
        self._executors: dict[tuple[str, str], Executor] = dict(executors or {})

    def resolve_action(self, agent: str) -> str:
        """Canonical action for an agent. Never fails."""
        return self.agent_actions.get(agent, self.fallback_action)

    def register(self, agent: str, action: str, executor: Executor) -> None:
        self._executors[(agent, action)] = executor

    def resolve_executor(self, agent: str, action: str) -> Executor | None:
        """Exact-pair lookup; None when the pair is not registered."""
        return self._executors.get((agent, action))

    def registered_pairs(self) -> list[tuple[str, str]]:
        return sorted(self._executors)


def build_router(store: EntityStore, calendar: CalendarClient | None = None,
                 agent_actions: Mapping[str, str] = AGENT_ACTIONS) -> ActionRouter:
    """Router wired with the default allow-list of executors."""
    router = ActionRouter(agent_actions=agent_actions)
    for (agent, action), kind in DEFAULT_EXECUTORS.items():
        router.register(agent, action, build_executor(kind, store, calendar))
    return router
