"""Interactive session: console, chat, commands, execution, validation and states."""

from session.commands import CommandHandler, CommandResult
from session.console import ConsoleUI, UserInterface
from session.conversation import ConversationManager
from session.executor import ExecutionError, TaskExecutionResult, TaskExecutor
from session.machine import InteractiveSession, Session, StateMachine
from session.references import expand_references, extract_references
from session.states import BaseState, SessionState, default_states
from session.validator import TaskValidator

__all__ = [
    "BaseState",
    "CommandHandler",
    "CommandResult",
    "ConsoleUI",
    "ConversationManager",
    "ExecutionError",
    "InteractiveSession",
    "Session",
    "SessionState",
    "StateMachine",
    "TaskExecutionResult",
    "TaskExecutor",
    "TaskValidator",
    "UserInterface",
    "default_states",
    "expand_references",
    "extract_references",
]
