"""Shared test fixtures.

Provides a fresh EventBus, isolated Settings (temporary history database,
mock LLM), a small project tree to work in, LLM response factories and a
scripted user interface, so tests never touch a real vendor API or the
user's home directory.
"""

import sys
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Ensure the project root is on sys.path so that absolute imports like
# ``from sandbox.security import ...`` resolve when running pytest from
# anywhere.
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from agents.tools import ToolContext  # noqa: E402
from agents.utils import LLMResponse, ToolCallData  # noqa: E402
from config import Settings  # noqa: E402
from events.bus import EventBus  # noqa: E402
from events.types import LLMMetrics  # noqa: E402
from llm.mock import MockLLM  # noqa: E402

# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    return EventBus()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Settings isolated from the environment and the user's config file."""
    monkeypatch.delenv("CODEPLANNER_CONFIG_FILE", raising=False)
    return Settings(
        config_file=str(tmp_path / "no-config.yaml"),
        database_path=str(tmp_path / "history.db"),
        use_mock_llm=True,
    )


# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    """A small project tree.

    project/
        .gitignore          (ignores build/ and *.log)
        README.md
        app.log
        build/out.js
        src/main.py         (10 lines, "line 1" .. "line 10")
        src/utils.py
        package.json        (react + jest)
    """
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "build").mkdir()
    (root / ".gitignore").write_text("build/\n*.log\n", encoding="utf-8")
    (root / "README.md").write_text("# Demo\n", encoding="utf-8")
    (root / "app.log").write_text("noise\n", encoding="utf-8")
    (root / "build" / "out.js").write_text("compiled\n", encoding="utf-8")
    (root / "src" / "main.py").write_text(
        "\n".join(f"line {i}" for i in range(1, 11)),
        encoding="utf-8",
    )
    (root / "src" / "utils.py").write_text("def helper():\n    return 42\n", encoding="utf-8")
    (root / "package.json").write_text(
        '{"dependencies": {"react": "^18.0.0"}, "devDependencies": {"jest": "^29.0.0"}}',
        encoding="utf-8",
    )
    return root


@pytest.fixture()
def approve() -> AsyncMock:
    """Approval callback that accepts everything."""
    return AsyncMock(return_value=True)


@pytest.fixture()
def tool_context(
    workspace: Path,
    approve: AsyncMock,
    settings: Settings,
    event_bus: EventBus,
) -> ToolContext:
    return ToolContext.create(workspace, approve, settings.tools, event_bus)


# ---------------------------------------------------------------------------
# Response Factories
# ---------------------------------------------------------------------------


def make_llm_response(
    content: str = "",
    tool_calls: list[ToolCallData] | None = None,
    finish_reason: str = "stop",
) -> LLMResponse:
    """Create an LLMResponse with sensible defaults."""
    return LLMResponse(
        content=content,
        tool_calls=tool_calls or [],
        finish_reason="tool_calls" if tool_calls else finish_reason,
        metrics=LLMMetrics(model="mock", input_tokens=10, output_tokens=20, latency_ms=100),
    )


def make_tool_call(name: str, args: dict[str, Any], call_id: str = "tc_1") -> ToolCallData:
    """Create a ToolCallData."""
    return ToolCallData(id=call_id, name=name, args=args)


@pytest.fixture()
def mock_llm(event_bus: EventBus):
    """Factory for MockLLMs wired to the test's event bus."""

    def _factory(responses: list[Any] | None = None, **kwargs: Any) -> MockLLM:
        return MockLLM(responses, event_bus=event_bus, **kwargs)

    return _factory


# ---------------------------------------------------------------------------
# Scripted user interface
# ---------------------------------------------------------------------------


class ScriptedUI:
    """UserInterface double with scripted answers and recorded output.

    Args:
        inputs: Answers to ``ask``, in order. ``/exit`` once exhausted.
        confirms: Answers to ``confirm``. ``default`` once exhausted.
        choices: Answers to ``choose``: a label or an index into the
            offered choices. The first choice once exhausted.
        approvals: Answer to every ``approve`` call.
    """

    def __init__(
        self,
        inputs: list[str] | None = None,
        confirms: list[bool] | None = None,
        choices: list[str | int] | None = None,
        approvals: bool = True,
    ) -> None:
        self.inputs = list(inputs or [])
        self.confirms = list(confirms or [])
        self.choices = list(choices or [])
        self.approvals = approvals
        self.questions: list[str] = []
        self.offered_choices: list[list[str]] = []
        self.approval_requests: list[str] = []
        self.output: list[tuple[str, str]] = []
        self.streamed: list[str] = []

    async def ask(self, prompt: str) -> str:
        self.questions.append(prompt)
        return self.inputs.pop(0) if self.inputs else "/exit"

    async def confirm(self, question: str, default: bool = True) -> bool:
        self.questions.append(question)
        return self.confirms.pop(0) if self.confirms else default

    async def choose(self, question: str, choices: list[str]) -> str:
        self.questions.append(question)
        self.offered_choices.append(list(choices))
        if not self.choices:
            return choices[0]
        answer = self.choices.pop(0)
        return choices[answer] if isinstance(answer, int) else answer

    async def approve(self, question: str, detail: str = "") -> bool:
        self.approval_requests.append(question)
        return self.approvals

    def render_markdown(self, text: str) -> None:
        self.output.append(("markdown", text))

    def info(self, message: str) -> None:
        self.output.append(("info", message))

    def success(self, message: str) -> None:
        self.output.append(("success", message))

    def warning(self, message: str) -> None:
        self.output.append(("warning", message))

    def error(self, message: str) -> None:
        self.output.append(("error", message))

    def stream_chunk(self, chunk: str) -> None:
        self.streamed.append(chunk)

    def end_stream(self) -> None:
        pass

    def text(self, kind: str | None = None) -> str:
        """All recorded output of ``kind`` (or every kind), newline-joined."""
        return "\n".join(msg for k, msg in self.output if kind is None or k == kind)


@pytest.fixture()
def ui() -> ScriptedUI:
    return ScriptedUI()
