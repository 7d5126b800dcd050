"""Session data, the state machine loop and the interactive session bootstrap.

Usage:
    >>> settings = load_settings()
    >>> session = InteractiveSession(settings, Path.cwd(), initial_prompt="Add a README")
    >>> asyncio.run(session.run())
"""

from dataclasses import dataclass, field
from pathlib import Path

import aiosqlite
import structlog

from agents.tools import ToolContext, build_toolset
from config import Settings
from events.bus import EventBus, track_metrics
from events.types import EventType, SessionMetrics
from llm.base import BaseLLM
from llm.errors import ConfigurationError
from llm.factory import create_llm, get_best_llm
from models.database import HistoryStore
from models.schemas import ContextProfile, TaskPlan
from planning.context import build_context_profile
from planning.planner import TaskPlanner
from planning.strategy import LLMStrategySelector
from sandbox.filesystem import FileSystemHelper
from session.commands import CommandHandler
from session.console import ConsoleUI, UserInterface
from session.conversation import ConversationManager
from session.executor import TaskExecutor
from session.states import BaseState, SessionState, default_states
from session.validator import TaskValidator

logger = structlog.get_logger(__name__)

PLANNING_TOOLS = ["read_file", "find_files", "list_files", "list_directories"]


@dataclass
class Session:
    """Collaborators and mutable state of one interactive session.

    Attributes:
        llm: The LLM picked at startup; answers chat and plans.
        execution_llm: Tier LLM chosen for the current plan, if any.
        user_input: The latest input as typed.
        processed_input: ``user_input`` with references expanded.
        initial_prompt: Queued first input, consumed once.
        current_plan: The plan being reviewed, executed or validated.
        referenced_files: Paths the user referenced with ``@path``.
        fix_attempts: Fixes tried in the current validate/fix cycle.
        is_active: Cleared by ``/exit``; the loop stops when False.
    """

    settings: Settings
    ui: UserInterface
    event_bus: EventBus
    fs: FileSystemHelper
    conversation: ConversationManager
    commands: CommandHandler
    planner: TaskPlanner
    selector: LLMStrategySelector
    executor: TaskExecutor
    validator: TaskValidator
    llm: BaseLLM | None = None
    store: HistoryStore | None = None
    execution_llm: BaseLLM | None = None
    prefer_local: bool = False
    prefer_remote: bool = False

    state: SessionState = SessionState.WAITING_FOR_INPUT
    user_input: str = ""
    processed_input: str = ""
    initial_prompt: str | None = None
    current_plan: TaskPlan | None = None
    context_profile: ContextProfile | None = None
    referenced_files: set[str] = field(default_factory=set)
    fix_attempts: int = 0
    is_active: bool = True

    @property
    def active_llm(self) -> BaseLLM:
        """LLM that executes the current plan."""
        llm = self.execution_llm or self.llm
        if llm is None:
            raise ConfigurationError("No LLM available")
        return llm

    def ensure_context_profile(self) -> ContextProfile:
        if self.context_profile is None:
            self.context_profile = build_context_profile(
                self.fs,
                referenced_files=sorted(self.referenced_files),
            )
        return self.context_profile

    async def llm_for(self, task_type: str) -> BaseLLM:
        """LLM for a task type, honouring ``task_planning.provider_for``."""
        name = self.settings.task_planning.provider_for.get(task_type)
        if name:
            try:
                llm = create_llm(self.settings, name, event_bus=self.event_bus)
            except ConfigurationError as e:
                logger.warning("task_llm_unusable", task_type=task_type, provider=name, reason=str(e))
            else:
                if await llm.is_available():
                    return llm
                logger.warning("task_llm_unavailable", task_type=task_type, provider=name)
        return self.active_llm

    def end_task(self) -> None:
        """Forget everything tied to the finished request."""
        self.current_plan = None
        self.execution_llm = None
        self.context_profile = None
        self.referenced_files.clear()
        self.fix_attempts = 0


class StateMachine:
    """Explicit loop over the session states.

    ``step`` runs the current state's ``process`` and performs the
    transition it returns. Exceptions from a state never escape: they are
    logged, shown, and turned into the state's recovery transition.
    """

    def __init__(
        self,
        session: Session,
        states: dict[SessionState, BaseState] | None = None,
    ) -> None:
        self.session = session
        self.states = states or default_states()

    async def _enter(self, state: SessionState) -> None:
        logger.info("state_entered", state=state.value)
        await self.session.event_bus.emit(EventType.STATE_ENTERED, state=state.value)
        try:
            await self.states[state].enter(self.session)
        except Exception as e:
            logger.error("state_process_failed", state=state.value, phase="enter", error=str(e))
            self.session.ui.error(f"Error entering {state.value}: {e}")

    async def transition(self, next_state: SessionState) -> None:
        current = self.session.state
        try:
            await self.states[current].exit(self.session, next_state)
        except Exception as e:
            logger.error("state_process_failed", state=current.value, phase="exit", error=str(e))
        await self.session.event_bus.emit(
            EventType.STATE_EXITED,
            state=current.value,
            next_state=next_state.value,
        )
        logger.info("state_transition", from_state=current.value, to_state=next_state.value)
        self.session.state = next_state
        await self._enter(next_state)

    async def step(self) -> SessionState:
        current = self.session.state
        state = self.states[current]
        try:
            next_state = await state.process(self.session)
        except Exception as e:
            logger.error(
                "state_process_failed",
                state=current.value,
                error_type=type(e).__name__,
                error=str(e),
                recovery=state.recovery.value,
            )
            self.session.ui.error(f"Error in {current.value.replace('_', ' ')}: {e}")
            next_state = state.recovery

        if next_state != current:
            await self.transition(next_state)
        return next_state

    async def run(self) -> None:
        await self._enter(self.session.state)
        while self.session.is_active:
            await self.step()


class InteractiveSession:
    """Builds a Session from settings and runs it until ``/exit``.

    Attributes:
        settings: Application settings.
        working_dir: Root every file tool is confined to.
        ui: User interface; a rich ``ConsoleUI`` by default.
        initial_prompt: First input, processed before prompting.
        provider: Provider name forced with ``--provider``.
        prefer_local: ``--local``: execute plans on the local tier.
        prefer_remote: ``--remote``: execute plans on the remote tier.
    """

    def __init__(
        self,
        settings: Settings,
        working_dir: str | Path,
        ui: UserInterface | None = None,
        *,
        initial_prompt: str | None = None,
        provider: str | None = None,
        prefer_local: bool = False,
        prefer_remote: bool = False,
        llm: BaseLLM | None = None,
    ) -> None:
        self.settings = settings
        self.working_dir = Path(working_dir).resolve()
        self.ui = ui or ConsoleUI()
        self.initial_prompt = initial_prompt
        self.provider = provider
        self.prefer_local = prefer_local
        self.prefer_remote = prefer_remote
        self.llm = llm
        self.metrics = SessionMetrics()

    async def _open_store(self) -> HistoryStore | None:
        store = HistoryStore(self.settings.resolved_database_path)
        try:
            await store.init()
        except (aiosqlite.Error, OSError) as e:
            logger.warning("history_store_unavailable", error=str(e))
            self.ui.warning(f"History is disabled: {e}")
            return None
        return store

    async def build(self) -> Session:
        """Wire every collaborator.

        Raises:
            NoLLMAvailableError: If no configured provider is usable.
        """
        event_bus = EventBus()
        track_metrics(event_bus, self.metrics)
        if isinstance(self.ui, ConsoleUI):
            self.ui.attach(event_bus)

        llm = self.llm or await get_best_llm(
            self.settings,
            provider_name=self.provider,
            preferred_provider=self.settings.task_planning.preferred_provider,
            event_bus=event_bus,
        )
        store = await self._open_store()

        tool_context = ToolContext.create(
            self.working_dir,
            self.ui.approve,
            self.settings.tools,
            event_bus,
        )
        conversation = ConversationManager(self.settings.chat, tool_context.fs, self.ui, store)
        await conversation.load_history()

        return Session(
            settings=self.settings,
            ui=self.ui,
            event_bus=event_bus,
            fs=tool_context.fs,
            conversation=conversation,
            commands=CommandHandler(conversation, self.ui, store),
            planner=TaskPlanner(
                self.settings.task_planning,
                llm,
                build_toolset(tool_context, names=PLANNING_TOOLS),
            ),
            selector=LLMStrategySelector(self.settings.task_planning.strategy),
            executor=TaskExecutor(tool_context, self.ui, event_bus),
            validator=TaskValidator(tool_context, event_bus),
            llm=llm,
            store=store,
            prefer_local=self.prefer_local,
            prefer_remote=self.prefer_remote,
            initial_prompt=self.initial_prompt,
        )

    async def run(self) -> SessionMetrics:
        session = await self.build()
        await session.event_bus.emit(EventType.SESSION_STARTED, working_dir=str(self.working_dir))
        logger.info(
            "session_started",
            working_dir=str(self.working_dir),
            llm=session.llm.get_provider_with_model() if session.llm else None,
        )
        if session.llm is not None:
            self.ui.info(f"Using {session.llm.get_provider_with_model()} in {self.working_dir}")

        try:
            await StateMachine(session).run()
        finally:
            await session.event_bus.emit(
                EventType.SESSION_ENDED,
                llm_calls=self.metrics.total_llm_calls,
                total_tokens=self.metrics.total_tokens,
            )
            logger.info(
                "session_ended",
                llm_calls=self.metrics.total_llm_calls,
                tool_calls=self.metrics.total_tool_calls,
                total_tokens=self.metrics.total_tokens,
            )
        return self.metrics
