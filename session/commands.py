"""Slash commands typed at the input prompt."""

from dataclasses import dataclass

import structlog

from models.database import HistoryStore
from session.console import UserInterface
from session.conversation import ConversationManager

logger = structlog.get_logger(__name__)

HELP_TEXT = """\
**Commands**

- `/exit`, `/quit` - leave the session
- `/save <name>` - save the last response as a prompt
- `/prompts` - list saved prompts
- `/clear` - clear the chat history
- `/help` - show this help

Reference files with `@path` (or `@"path with spaces"`) and saved prompts with `@name`."""


@dataclass
class CommandResult:
    handled: bool = True
    exit: bool = False


class CommandHandler:
    """Dispatches ``/command args`` input.

    Attributes:
        conversation: Chat history the commands act on.
        ui: Where results are shown.
        store: Saved prompts; prompt commands report an error without one.
    """

    def __init__(
        self,
        conversation: ConversationManager,
        ui: UserInterface,
        store: HistoryStore | None = None,
    ) -> None:
        self.conversation = conversation
        self.ui = ui
        self.store = store

    async def handle(self, text: str) -> CommandResult:
        command, _, argument = text.strip().partition(" ")
        command = command.lower()
        argument = argument.strip()
        logger.debug("command_received", command=command)

        if command in ("/exit", "/quit"):
            self.ui.info("Goodbye!")
            return CommandResult(exit=True)
        if command == "/save":
            await self._save(argument)
        elif command == "/prompts":
            await self._list_prompts()
        elif command == "/clear":
            await self.conversation.clear_history()
            self.ui.success("Chat history cleared")
        elif command == "/help":
            self.ui.render_markdown(HELP_TEXT)
        else:
            self.ui.error(f"Unknown command: {command}")
            return CommandResult(handled=False)
        return CommandResult()

    async def _save(self, name: str) -> None:
        if not name:
            self.ui.error("Please provide a name for the prompt")
            return
        response = self.conversation.get_last_response()
        if not response:
            self.ui.error("No response to save")
            return
        if self.store is None or not await self.store.save_prompt(name, response):
            self.ui.error(f"Could not save prompt: {name}")
            return
        self.ui.success(f"Prompt saved as: {name}")

    async def _list_prompts(self) -> None:
        names = await self.store.list_prompts() if self.store is not None else []
        if not names:
            self.ui.info("No prompts available")
            return
        self.ui.render_markdown("Available prompts:\n\n" + "\n".join(f"- `@{n}`" for n in names))
