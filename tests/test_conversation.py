"""Tests for session/references.py, session/conversation.py and
session/commands.py -- reference expansion, chat history and slash commands.
"""

from pathlib import Path

import pytest

from config import ChatSettings
from llm.mock import MockLLM
from models.database import HistoryStore
from sandbox.filesystem import FileSystemHelper
from session.commands import HELP_TEXT, CommandHandler
from session.conversation import ConversationManager
from session.references import expand_references, extract_references
from tests.conftest import ScriptedUI


@pytest.fixture()
def fs(workspace: Path) -> FileSystemHelper:
    helper = FileSystemHelper(workspace)
    helper.load_gitignore()
    return helper


@pytest.fixture()
async def store(tmp_path: Path) -> HistoryStore:
    history = HistoryStore(tmp_path / "history.db")
    await history.init()
    return history


@pytest.fixture()
def conversation(fs: FileSystemHelper, ui: ScriptedUI, store: HistoryStore) -> ConversationManager:
    return ConversationManager(ChatSettings(max_history_messages=4), fs, ui, store)


@pytest.fixture()
def commands(conversation: ConversationManager, ui: ScriptedUI, store: HistoryStore) -> CommandHandler:
    return CommandHandler(conversation, ui, store)


# =========================================================================
# References
# =========================================================================


class TestExtractReferences:
    def test_forms_order_and_dedupe(self) -> None:
        message = (
            'explain @src/app.py and @"docs/user guide.md" using @review, '
            "then @'notes.txt' and again @src/app.py."
        )
        assert extract_references(message) == [
            "src/app.py",
            "docs/user guide.md",
            "review",
            "notes.txt",
        ]

    def test_reference_at_start(self) -> None:
        assert extract_references("@README.md please") == ["README.md"]

    def test_email_is_not_a_reference(self) -> None:
        assert extract_references("mail me@example.com") == []

    def test_lone_at_sign(self) -> None:
        assert extract_references("a @ b") == []


class TestExpandReferences:
    def test_file_expanded_with_punctuation_kept(self, fs: FileSystemHelper) -> None:
        expanded = expand_references("Look at @src/utils.py.", fs)
        assert expanded.startswith('Look at <file path="src/utils.py" syntax="py">\ndef helper():')
        assert expanded.endswith("</file>.")

    def test_quoted_path(self, fs: FileSystemHelper, workspace: Path) -> None:
        (workspace / "my notes.md").write_text("remember", encoding="utf-8")
        expanded = expand_references('see @"my notes.md"', fs)
        assert expanded == 'see <file path="my notes.md" syntax="md">\nremember\n</file>'

    def test_saved_prompt_wins(self, fs: FileSystemHelper) -> None:
        expanded = expand_references("@README.md", fs, {"README.md": "prompt text"})
        assert expanded == "prompt text"

    def test_unreadable_reference_left_as_typed(self, fs: FileSystemHelper) -> None:
        message = "check @missing.py and @../../etc/passwd"
        assert expand_references(message, fs) == message


# =========================================================================
# ConversationManager
# =========================================================================


class TestConversation:
    async def test_process_input_records_expanded_turn(
        self, conversation: ConversationManager
    ) -> None:
        processed = await conversation.process_input("Summarize @README.md")
        assert "# Demo" in processed
        assert conversation.history[-1].role == "user"
        assert conversation.history[-1].content == processed

    async def test_saved_prompt_expanded_from_store(
        self, conversation: ConversationManager, store: HistoryStore
    ) -> None:
        await store.save_prompt("checklist", "Check naming and tests.")
        processed = await conversation.process_input("Review using @checklist")
        assert processed == "Review using Check naming and tests."

    async def test_history_capped_in_memory_and_store(
        self, conversation: ConversationManager, store: HistoryStore
    ) -> None:
        for i in range(6):
            await conversation.process_input(f"message {i}")

        assert [m.content for m in conversation.history] == [f"message {i}" for i in range(2, 6)]
        persisted = await store.load_chat_history(limit=100)
        assert len(persisted) == 4

    async def test_history_reloaded(
        self, conversation: ConversationManager, fs: FileSystemHelper, store: HistoryStore
    ) -> None:
        await conversation.process_input("hello")
        await conversation.add_assistant_message("hi there")

        fresh = ConversationManager(ChatSettings(), fs, ScriptedUI(), store)
        await fresh.load_history()
        assert fresh.transcript() == "User: hello\n\nAssistant: hi there"

    async def test_history_not_persisted_when_disabled(
        self, fs: FileSystemHelper, store: HistoryStore
    ) -> None:
        manager = ConversationManager(ChatSettings(save_history=False), fs, ScriptedUI(), store)
        await manager.process_input("private")
        assert await store.load_chat_history(limit=10) == []

    async def test_generate_response(self, conversation: ConversationManager, ui: ScriptedUI) -> None:
        await conversation.process_input("What is 2+2?")
        llm = MockLLM(["4"])

        answer = await conversation.generate_response(llm, context="Project root: /p")
        assert answer == "4"
        assert ui.streamed == ["4"]
        assert conversation.get_last_response() == "4"
        system, user = llm.call_history[0]
        assert system["content"].endswith("Project root: /p")
        assert user["content"] == "User: What is 2+2?"

    async def test_generate_response_failure(
        self, conversation: ConversationManager, ui: ScriptedUI
    ) -> None:
        await conversation.process_input("hi")
        answer = await conversation.generate_response(MockLLM([RuntimeError("backend down")]))

        assert answer == ""
        assert "Error generating response: backend down" in ui.text("error")
        assert conversation.get_last_response() is None

    async def test_base_prompt(self, conversation: ConversationManager) -> None:
        assert conversation.base_prompt() == ""
        await conversation.process_input("Build a CLI")
        assert conversation.base_prompt("Stack: Python") == (
            "Stack: Python\n\nConversation so far:\nUser: Build a CLI"
        )


# =========================================================================
# Commands
# =========================================================================


class TestCommands:
    async def test_exit(self, commands: CommandHandler, ui: ScriptedUI) -> None:
        for text in ("/exit", "/QUIT"):
            assert (await commands.handle(text)).exit is True
        assert ui.text("info") == "Goodbye!\nGoodbye!"

    async def test_save_and_list(
        self, commands: CommandHandler, conversation: ConversationManager, ui: ScriptedUI
    ) -> None:
        await conversation.add_assistant_message("Use small functions.")
        await commands.handle("/save style")
        await commands.handle("/prompts")

        assert "Prompt saved as: style" in ui.text("success")
        assert ui.text("markdown") == "Available prompts:\n\n- `@style`"

    async def test_save_without_name(self, commands: CommandHandler, ui: ScriptedUI) -> None:
        await commands.handle("/save")
        assert ui.text("error") == "Please provide a name for the prompt"

    async def test_save_without_response(self, commands: CommandHandler, ui: ScriptedUI) -> None:
        await commands.handle("/save style")
        assert ui.text("error") == "No response to save"

    async def test_save_without_store(
        self, conversation: ConversationManager, ui: ScriptedUI
    ) -> None:
        await conversation.add_assistant_message("text")
        await CommandHandler(conversation, ui).handle("/save style")
        assert ui.text("error") == "Could not save prompt: style"

    async def test_no_prompts(self, commands: CommandHandler, ui: ScriptedUI) -> None:
        await commands.handle("/prompts")
        assert ui.text("info") == "No prompts available"

    async def test_clear(
        self, commands: CommandHandler, conversation: ConversationManager, store: HistoryStore
    ) -> None:
        await conversation.process_input("hello")
        await commands.handle("/clear")

        assert conversation.history == []
        assert await store.load_chat_history(limit=10) == []

    async def test_help(self, commands: CommandHandler, ui: ScriptedUI) -> None:
        result = await commands.handle("/help")
        assert result.handled is True
        assert ui.text("markdown") == HELP_TEXT

    async def test_unknown(self, commands: CommandHandler, ui: ScriptedUI) -> None:
        result = await commands.handle("/frobnicate now")
        assert result.handled is False
        assert result.exit is False
        assert ui.text("error") == "Unknown command: /frobnicate"
