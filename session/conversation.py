"""Chat history and direct (unplanned) responses."""

import structlog

from agents.prompts import CHAT_SYSTEM_PROMPT, compose_prompt_sections
from config import ChatSettings
from llm.base import BaseLLM
from models.database import HistoryStore
from models.schemas import ChatMessage
from sandbox.filesystem import FileSystemHelper
from session.console import UserInterface
from session.references import expand_references, extract_references

logger = structlog.get_logger(__name__)

ROLE_LABELS = {"user": "User", "assistant": "Assistant", "system": "System"}


class ConversationManager:
    """Keeps the capped chat history and answers requests without a plan.

    Attributes:
        settings: History cap and persistence switch.
        fs: File access used to expand ``@path`` references.
        ui: Where streamed answers and errors are shown.
        store: Optional persistent history.
        history: In-memory history, oldest first, at most
            ``settings.max_history_messages`` entries.
    """

    def __init__(
        self,
        settings: ChatSettings,
        fs: FileSystemHelper,
        ui: UserInterface,
        store: HistoryStore | None = None,
    ) -> None:
        self.settings = settings
        self.fs = fs
        self.ui = ui
        self.store = store
        self.history: list[ChatMessage] = []

    async def load_history(self) -> None:
        if self.store is None or not self.settings.save_history:
            return
        self.history = await self.store.load_chat_history(self.settings.max_history_messages)
        logger.debug("chat_history_loaded", messages=len(self.history))

    async def _append(self, message: ChatMessage) -> None:
        self.history.append(message)
        cap = self.settings.max_history_messages
        if len(self.history) > cap:
            self.history = self.history[-cap:]
        if self.store is not None and self.settings.save_history:
            await self.store.append_chat_message(message, cap)

    async def _saved_prompts(self, message: str) -> dict[str, str]:
        if self.store is None:
            return {}
        prompts: dict[str, str] = {}
        names = set(await self.store.list_prompts())
        for reference in extract_references(message):
            if reference in names:
                content = await self.store.get_prompt(reference)
                if content is not None:
                    prompts[reference] = content
        return prompts

    async def process_input(self, message: str) -> str:
        """Expand references and record the message as the user's turn.

        Returns:
            The expanded message.
        """
        processed = expand_references(message, self.fs, await self._saved_prompts(message))
        await self._append(ChatMessage(role="user", content=processed))
        return processed

    async def add_assistant_message(self, content: str) -> None:
        await self._append(ChatMessage(role="assistant", content=content))

    def transcript(self) -> str:
        return "\n\n".join(
            f"{ROLE_LABELS.get(m.role, m.role)}: {m.content}" for m in self.history
        )

    def base_prompt(self, context: str = "") -> str:
        """Request context shared by every subtask prompt."""
        history = self.transcript()
        return compose_prompt_sections(
            context,
            f"Conversation so far:\n{history}" if history else "",
        )

    async def generate_response(self, llm: BaseLLM, context: str = "") -> str:
        """Stream a direct answer to the latest user turn.

        LLM failures are shown to the user and yield an empty answer; the
        session goes on.
        """
        system_prompt = compose_prompt_sections(CHAT_SYSTEM_PROMPT, context)
        try:
            response = await llm.generate_stream(
                self.transcript(),
                self.ui.stream_chunk,
                system_prompt=system_prompt,
            )
        except Exception as e:
            logger.error("chat_response_failed", error_type=type(e).__name__, error=str(e))
            self.ui.error(f"Error generating response: {e}")
            return ""
        finally:
            self.ui.end_stream()

        await self.add_assistant_message(response)
        return response

    def get_last_response(self) -> str | None:
        for message in reversed(self.history):
            if message.role == "assistant":
                return message.content
        return None

    async def clear_history(self) -> None:
        self.history = []
        if self.store is not None:
            await self.store.clear_chat_history()
