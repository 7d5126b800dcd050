"""Tests for session/machine.py and main.py -- the state machine loop, the
session bootstrap and the command-line entry point.
"""

from pathlib import Path

import pytest
from click.testing import CliRunner

from config import Settings
from events.types import EventType
from llm.mock import MockLLM
from main import cli
from models.database import HistoryStore
from models.schemas import ValidationStatus
from session.machine import InteractiveSession, Session, StateMachine
from session.states import BaseState, SessionState
from tests.conftest import ScriptedUI, make_llm_response, make_tool_call

REQUEST = "Implement a user authentication system"


@pytest.fixture()
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.delenv("CODEPLANNER_CONFIG_FILE", raising=False)
    return Settings(
        config_file=str(tmp_path / "no-config.yaml"),
        database_path=str(tmp_path / "history.db"),
        use_mock_llm=True,
        local_provider=None,
        remote_provider=None,
    )


@pytest.fixture()
async def session(settings: Settings, workspace: Path, ui: ScriptedUI) -> Session:
    return await InteractiveSession(settings, workspace, ui, llm=MockLLM()).build()


class RecordingState(BaseState):
    """State double that records its hooks and returns a fixed next state."""

    def __init__(
        self,
        name: SessionState,
        next_state: SessionState,
        recovery: SessionState = SessionState.WAITING_FOR_INPUT,
        error: Exception | None = None,
        enter_error: Exception | None = None,
    ) -> None:
        self.name = name
        self.next_state = next_state
        self.recovery = recovery
        self.error = error
        self.enter_error = enter_error
        self.calls: list[str] = []

    async def enter(self, session: Session) -> None:
        self.calls.append("enter")
        if self.enter_error is not None:
            raise self.enter_error

    async def process(self, session: Session) -> SessionState:
        self.calls.append("process")
        if self.error is not None:
            raise self.error
        return self.next_state

    async def exit(self, session: Session, next_state: SessionState) -> None:
        self.calls.append(f"exit->{next_state.value}")


def _states(*states: RecordingState) -> dict[SessionState, BaseState]:
    return {state.name: state for state in states}


# =========================================================================
# StateMachine
# =========================================================================


class TestStateMachine:
    async def test_step_transitions(self, session: Session) -> None:
        waiting = RecordingState(SessionState.WAITING_FOR_INPUT, SessionState.GATHERING_CONTEXT)
        gathering = RecordingState(SessionState.GATHERING_CONTEXT, SessionState.GATHERING_CONTEXT)
        machine = StateMachine(session, _states(waiting, gathering))

        assert await machine.step() == SessionState.GATHERING_CONTEXT
        assert session.state == SessionState.GATHERING_CONTEXT
        assert waiting.calls == ["process", "exit->gathering_context"]
        assert gathering.calls == ["enter"]

        exited = session.event_bus.get_history(EventType.STATE_EXITED)
        assert [(e.data["state"], e.data["next_state"]) for e in exited] == [
            ("waiting_for_input", "gathering_context")
        ]
        entered = session.event_bus.get_history(EventType.STATE_ENTERED)
        assert [e.data["state"] for e in entered] == ["gathering_context"]

    async def test_same_state_is_not_a_transition(self, session: Session) -> None:
        waiting = RecordingState(SessionState.WAITING_FOR_INPUT, SessionState.WAITING_FOR_INPUT)
        machine = StateMachine(session, _states(waiting))

        await machine.step()
        await machine.step()
        assert waiting.calls == ["process", "process"]
        assert session.event_bus.get_history(EventType.STATE_EXITED) == []

    async def test_process_error_moves_to_recovery(
        self, session: Session, ui: ScriptedUI
    ) -> None:
        executing = RecordingState(
            SessionState.EXECUTING_TASKS,
            SessionState.VALIDATING_TASKS,
            recovery=SessionState.GENERATING_SUMMARY,
            error=RuntimeError("disk full"),
        )
        summary = RecordingState(SessionState.GENERATING_SUMMARY, SessionState.WAITING_FOR_INPUT)
        session.state = SessionState.EXECUTING_TASKS
        machine = StateMachine(session, _states(executing, summary))

        assert await machine.step() == SessionState.GENERATING_SUMMARY
        assert ui.text("error") == "Error in executing tasks: disk full"
        assert executing.calls == ["process", "exit->generating_summary"]
        assert summary.calls == ["enter"]

    async def test_enter_error_is_shown(self, session: Session, ui: ScriptedUI) -> None:
        waiting = RecordingState(SessionState.WAITING_FOR_INPUT, SessionState.GATHERING_CONTEXT)
        gathering = RecordingState(
            SessionState.GATHERING_CONTEXT,
            SessionState.GATHERING_CONTEXT,
            enter_error=ValueError("bad profile"),
        )
        machine = StateMachine(session, _states(waiting, gathering))

        await machine.step()
        assert session.state == SessionState.GATHERING_CONTEXT
        assert ui.text("error") == "Error entering gathering_context: bad profile"

    async def test_run_stops_when_inactive(self, session: Session) -> None:
        class ExitingState(RecordingState):
            async def process(self, session: Session) -> SessionState:
                session.is_active = False
                return await super().process(session)

        waiting = ExitingState(SessionState.WAITING_FOR_INPUT, SessionState.WAITING_FOR_INPUT)
        await StateMachine(session, _states(waiting)).run()

        assert waiting.calls == ["enter", "process"]

    def test_default_states_cover_every_state(self, session: Session) -> None:
        machine = StateMachine(session)
        assert set(machine.states) == set(SessionState)


# =========================================================================
# Session
# =========================================================================


class TestSession:
    async def test_active_llm(self, session: Session) -> None:
        assert session.active_llm is session.llm
        session.execution_llm = MockLLM(model="tier")
        assert session.active_llm.model == "tier"

    async def test_llm_for_task_type(self, session: Session) -> None:
        session.settings.task_planning.provider_for = {"validation": "anthropic"}

        validation_llm = await session.llm_for("validation")
        assert validation_llm.model == "mock-anthropic"
        assert await session.llm_for("testing") is session.llm

    async def test_end_task(self, session: Session) -> None:
        session.execution_llm = MockLLM()
        session.fix_attempts = 2
        session.referenced_files.add("a.py")
        session.ensure_context_profile()

        session.end_task()
        assert session.execution_llm is None
        assert session.context_profile is None
        assert session.fix_attempts == 0
        assert session.referenced_files == set()


# =========================================================================
# InteractiveSession
# =========================================================================


class TestInteractiveSession:
    async def test_build_without_store(
        self, settings: Settings, workspace: Path, tmp_path: Path, ui: ScriptedUI
    ) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        settings.database_path = str(blocker / "history.db")

        session = await InteractiveSession(settings, workspace, ui, llm=MockLLM()).build()
        assert session.store is None
        assert ui.text("warning").startswith("History is disabled:")

    async def test_build_picks_best_llm(
        self, settings: Settings, workspace: Path, ui: ScriptedUI
    ) -> None:
        session = await InteractiveSession(settings, workspace, ui, provider="google").build()
        assert session.llm.model == "mock-google"
        assert session.planner.llm is session.llm

    async def test_full_request_cycle(
        self, settings: Settings, workspace: Path, ui: ScriptedUI
    ) -> None:
        llm = MockLLM(
            [
                make_llm_response(
                    tool_calls=[
                        make_tool_call("write_file", {"path": "src/auth.py", "content": "TOKEN = 1\n"})
                    ]
                ),
                "Implemented authentication.",
                '{"status": "passed", "message": "auth module present"}',
            ]
        )
        interactive = InteractiveSession(settings, workspace, ui, initial_prompt=REQUEST, llm=llm)

        metrics = await interactive.run()

        assert (workspace / "src" / "auth.py").read_text(encoding="utf-8") == "TOKEN = 1\n"
        assert metrics.total_tool_calls == 1
        assert ui.approval_requests == ["Do you accept write to src/auth.py?"]
        assert ui.questions == ["Do you want to proceed with this plan?", "You"]

        markdown = ui.text("markdown")
        assert "# Task Planning Report" in markdown
        assert "## Task Execution Summary" in markdown
        assert "- `src/auth.py`" in markdown
        assert "✓ Validation passed: auth module present" in ui.text("success")

        store = HistoryStore(settings.resolved_database_path)
        await store.init()
        plans = await store.get_completed_plans()
        assert [p.original_request for p in plans] == [REQUEST]
        assert plans[0].validation_result.status == ValidationStatus.PASSED

    async def test_exit_immediately(
        self, settings: Settings, workspace: Path, ui: ScriptedUI
    ) -> None:
        metrics = await InteractiveSession(settings, workspace, ui, llm=MockLLM()).run()
        assert metrics.total_llm_calls == 0
        assert ui.questions == ["You"]
        assert ui.text("info").endswith("Goodbye!")


# =========================================================================
# CLI
# =========================================================================


class TestCli:
    @pytest.fixture()
    def env(self, tmp_path: Path) -> dict[str, str]:
        return {
            "CODEPLANNER_USE_MOCK_LLM": "true",
            "CODEPLANNER_DATABASE_PATH": str(tmp_path / "cli-history.db"),
            "CODEPLANNER_CONFIG_FILE": str(tmp_path / "missing.yaml"),
        }

    def test_local_and_remote_are_exclusive(self, env: dict[str, str]) -> None:
        result = CliRunner().invoke(cli, ["--local", "--remote"], env=env)
        assert result.exit_code == 2
        assert "mutually exclusive" in result.output

    def test_invalid_config(self, env: dict[str, str], tmp_path: Path) -> None:
        config = tmp_path / "config.yaml"
        config.write_text("tools:\n  max_fix_attempts: 0\n", encoding="utf-8")

        result = CliRunner().invoke(cli, ["--config", str(config)], env=env)
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_session_until_exit(self, env: dict[str, str], workspace: Path) -> None:
        result = CliRunner().invoke(cli, ["-C", str(workspace)], input="/help\n/exit\n", env=env)
        assert result.exit_code == 0, result.output
        assert "Goodbye!" in result.output
        assert "0 LLM calls" in result.output
