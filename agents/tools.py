"""Tool definitions for LLM function calling.

Every tool validates its arguments with a pydantic model, touches the disk
only through FileSystemHelper, and returns a JSON string carrying a
``status`` of ``success``, ``error`` or ``canceled``. Nothing raised inside a
tool escapes ``BaseTool.run``: failures are serialized so the model can read
them and repair its next call.
"""

import asyncio
import json
import os
import signal
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, ClassVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agents.utils import truncate_for_event
from config import ToolSettings
from events.bus import EventBus
from events.types import EventType
from sandbox.filesystem import FileSystemHelper
from sandbox.security import (
    PathSandboxError,
    is_trusted_command,
    sanitize_output,
    validate_command,
)

logger = structlog.get_logger(__name__)

ApprovalCallback = Callable[[str, str], Awaitable[bool]]

MAX_READ_FILE_CHARS = 60_000
MAX_COMMAND_OUTPUT_CHARS = 20_000

_IS_POSIX = os.name == "posix"


class ToolStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    CANCELED = "canceled"


class ApprovalDenied(Exception):
    """Raised when the user declines a write or a command."""

    def __init__(self, subject: str, message: str) -> None:
        self.subject = subject
        self.message = message
        super().__init__(message)


def tool_result(status: ToolStatus, message: str, **extra: Any) -> str:
    """Serialize a tool outcome to the JSON string handed back to the model."""
    return json.dumps({"status": status.value, "message": message, **extra}, indent=2)


def validation_error_result(error: ValidationError) -> str:
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "(root)",
            "message": err["msg"],
            "type": err["type"],
        }
        for err in error.errors()
    ]
    return tool_result(
        ToolStatus.ERROR,
        "validation failed, please fix the errors",
        errors=errors,
    )


def render_file_for_llm(path: str, content: str, with_line_numbers: bool = False) -> str:
    """Wrap file content in the ``<file>`` envelope used in prompts."""
    syntax = Path(path).suffix.lstrip(".")
    if with_line_numbers:
        content = "\n".join(f"{i}:{line}" for i, line in enumerate(content.split("\n"), 1))
    syntax_attr = f' syntax="{syntax}"' if syntax else ""
    return f'<file path="{path}"{syntax_attr}>\n{content}\n</file>'


@dataclass
class ToolContext:
    """Shared state every tool of one toolset works against.

    Attributes:
        fs: File access confined to the working root.
        approve: Async callback ``(question, detail) -> bool`` for writes and
            untrusted commands.
        settings: Tool limits and trusted command prefixes.
        event_bus: Optional bus for tool and file-change events.
        files_changed: Root-relative paths written during this toolset's life.
    """

    fs: FileSystemHelper
    approve: ApprovalCallback
    settings: ToolSettings = field(default_factory=ToolSettings)
    event_bus: EventBus | None = None
    files_changed: list[str] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        root: str | Path,
        approve: ApprovalCallback,
        settings: ToolSettings | None = None,
        event_bus: EventBus | None = None,
    ) -> "ToolContext":
        fs = FileSystemHelper(root)
        fs.load_gitignore()
        return cls(
            fs=fs,
            approve=approve,
            settings=settings or ToolSettings(),
            event_bus=event_bus,
        )

    async def require_approval(
        self,
        question: str,
        detail: str = "",
        denied_message: str = "Operation was not approved by the user",
    ) -> None:
        """Ask the user; raise ApprovalDenied on a no."""
        if not await self.approve(question, detail):
            logger.info("approval_denied", question=question)
            raise ApprovalDenied(question, denied_message)

    async def record_change(self, path: str, operation: str) -> None:
        if path not in self.files_changed:
            self.files_changed.append(path)
        if self.event_bus is not None:
            await self.event_bus.emit(EventType.FILE_CHANGED, path=path, operation=operation)


class ToolArgs(BaseModel):
    """Base for tool argument models. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")


class BaseTool(ABC):
    """A named, schema-described operation the model may call.

    Subclasses set ``name``, ``description`` and ``args_model`` and implement
    ``execute``, which may raise freely; ``run`` turns every exception into a
    structured result.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    args_model: ClassVar[type[ToolArgs]]

    def __init__(self, context: ToolContext) -> None:
        self.context = context

    @property
    def fs(self) -> FileSystemHelper:
        return self.context.fs

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON schema of the arguments."""
        return self.args_model.model_json_schema()

    def definition(self) -> dict[str, Any]:
        """Tool definition in the format expected by LiteLLM."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    async def run(self, args: dict[str, Any]) -> str:
        """Validate ``args``, execute, and return a JSON result string."""
        start_time = time.time()
        bus = self.context.event_bus
        if bus is not None:
            await bus.emit(EventType.TOOL_CALL, tool=self.name, args=truncate_for_event(args))

        try:
            parsed = self.args_model.model_validate(args)
        except ValidationError as e:
            logger.warning("tool_validation_failed", tool=self.name, errors=e.error_count())
            result = validation_error_result(e)
        else:
            try:
                result = await self.execute(parsed)
            except ApprovalDenied as e:
                result = tool_result(ToolStatus.CANCELED, e.message)
            except PathSandboxError as e:
                result = tool_result(ToolStatus.ERROR, str(e))
            except Exception as e:
                logger.error("tool_execution_failed", tool=self.name, error=str(e))
                result = tool_result(ToolStatus.ERROR, f"Failed to execute tool: {e}")

        status = _result_status(result)
        duration_ms = int((time.time() - start_time) * 1000)
        logger.debug("tool_executed", tool=self.name, status=status, duration_ms=duration_ms)
        if bus is not None:
            await bus.emit(
                EventType.TOOL_RESULT,
                tool=self.name,
                status=status,
                duration_ms=duration_ms,
            )
        return result

    @abstractmethod
    async def execute(self, args: Any) -> str:
        """Perform the operation and return a JSON result string."""


def _result_status(result: str) -> str:
    try:
        return str(json.loads(result).get("status", "unknown"))
    except (json.JSONDecodeError, AttributeError):
        return "unknown"


# =========================================================================
# Read-only tools
# =========================================================================


class ReadFileArgs(ToolArgs):
    path: str | list[str] = Field(description="The path to the file(s) to read")
    encoding: str = Field(default="utf-8", description="Text encoding of the file")


class ReadFileTool(BaseTool):
    name = "read_file"
    description = (
        "Read one or more files from the working directory. Returns the content "
        "of each file with line numbers."
    )
    args_model = ReadFileArgs

    async def execute(self, args: ReadFileArgs) -> str:
        paths = args.path if isinstance(args.path, list) else [args.path]
        if not paths:
            return tool_result(ToolStatus.ERROR, "No file path given")

        rendered: list[str] = []
        failures: list[dict[str, str]] = []
        for path in paths:
            try:
                content = self.fs.read_file(path, encoding=args.encoding)
            except (OSError, PathSandboxError, UnicodeDecodeError) as e:
                failures.append({"path": path, "error": str(e)})
                continue
            if len(content) > MAX_READ_FILE_CHARS:
                omitted = len(content) - MAX_READ_FILE_CHARS
                content = content[:MAX_READ_FILE_CHARS] + f"\n... [truncated {omitted} characters]"
            rendered.append(render_file_for_llm(path, content, with_line_numbers=True))

        if not rendered:
            return tool_result(
                ToolStatus.ERROR,
                f"File {failures[0]['path']} could not be read: {failures[0]['error']}",
                errors=failures,
            )
        extra: dict[str, Any] = {"content": "\n".join(rendered)}
        if failures:
            extra["errors"] = failures
        return tool_result(ToolStatus.SUCCESS, f"Read {len(rendered)} file(s)", **extra)


class FindFilesArgs(ToolArgs):
    pattern: str = Field(description="The pattern to match (glob or regex)")
    use_regex: bool = Field(default=False, description="Whether to use regex for matching")
    recursive: bool = Field(default=True, description="Whether to search recursively")
    extension: str | None = Field(
        default=None, description='The file extension to filter by (e.g., "py", "ts")'
    )
    directory: str = Field(
        default=".", description="The directory to search in (relative to working directory)"
    )


class FindFilesTool(BaseTool):
    name = "find_files"
    description = "Find files in the working directory matching a glob or regex pattern."
    args_model = FindFilesArgs

    async def execute(self, args: FindFilesArgs) -> str:
        directory = self.fs.resolve(args.directory)
        files = self.fs.find_files(
            args.pattern,
            directory=directory,
            use_regex=args.use_regex,
            recursive=args.recursive,
            extension=args.extension,
        )
        if not files:
            return tool_result(ToolStatus.SUCCESS, "No files found matching the pattern.", files=[])
        return tool_result(ToolStatus.SUCCESS, f"Found {len(files)} files:", files=files)


class ListFilesArgs(ToolArgs):
    directory: str = Field(
        default=".", description="The directory to list files from (relative to working directory)"
    )
    depth: int = Field(
        default=4,
        ge=0,
        description="The maximum depth to recurse into subdirectories (0 means only the directory itself)",
    )
    include_dirs: bool = Field(default=False, description="Whether to include directories in the output")
    extension: str | None = Field(
        default=None, description='The file extension to filter by (e.g., "py", "ts")'
    )


class ListFilesTool(BaseTool):
    name = "list_files"
    description = (
        "List files in a directory recursively with configurable depth. Limited to "
        "the working directory. Excludes files from .gitignore if it exists."
    )
    args_model = ListFilesArgs

    async def execute(self, args: ListFilesArgs) -> str:
        directory = self.fs.resolve(args.directory)
        files = self.fs.list_files_recursively(
            directory,
            max_depth=args.depth,
            include_dirs=args.include_dirs,
            extension=args.extension,
        )
        if not files:
            return tool_result(ToolStatus.SUCCESS, "No files found in the directory.", files=[])
        return tool_result(ToolStatus.SUCCESS, f"Found {len(files)} files:", files=files)


class ListDirectoriesArgs(ToolArgs):
    directory: str = Field(
        default=".", description="The directory to list directories from (relative to working directory)"
    )
    depth: int = Field(
        default=1,
        ge=0,
        description="The maximum depth to recurse into subdirectories (0 means only the directory itself)",
    )


class ListDirectoriesTool(BaseTool):
    name = "list_directories"
    description = (
        "List directories in the working directory with configurable depth. "
        "Respects .gitignore patterns."
    )
    args_model = ListDirectoriesArgs

    async def execute(self, args: ListDirectoriesArgs) -> str:
        directory = self.fs.resolve(args.directory)
        directories = self.fs.list_directories_recursively(directory, max_depth=args.depth)
        if not directories:
            return tool_result(
                ToolStatus.SUCCESS,
                "No directories found in the specified directory.",
                directories=[],
            )
        return tool_result(
            ToolStatus.SUCCESS,
            f"Found {len(directories)} directories:",
            directories=directories,
        )


# =========================================================================
# Mutating tools
# =========================================================================


class WriteFileArgs(ToolArgs):
    path: str = Field(description="The path to the file to write")
    content: str = Field(description="The complete content to write to the file")
    overwrite: bool = Field(default=True, description="Whether to overwrite the file if it exists")


class WriteFileTool(BaseTool):
    name = "write_file"
    description = (
        "Write content to a file in the working directory, creating parent "
        "directories. Prefer edit_file or patch_file for changes to existing files."
    )
    args_model = WriteFileArgs

    async def execute(self, args: WriteFileArgs) -> str:
        resolved = self.fs.resolve(args.path)
        relative = self.fs.relative(resolved)

        if resolved.exists() and not args.overwrite:
            return tool_result(
                ToolStatus.ERROR,
                f"File {args.path} already exists and overwrite is set to false",
                current_content=self.fs.read_file(relative),
            )

        await self.context.require_approval(
            f"Do you accept write to {relative}?",
            args.content,
            denied_message=f"File write operation to {relative} was not approved by the user",
        )
        self.fs.write_file(relative, args.content)
        await self.context.record_change(relative, "write")

        logger.info("file_written", path=relative, chars=len(args.content))
        return tool_result(
            ToolStatus.SUCCESS,
            f"Successfully wrote {len(args.content)} characters to {relative}",
        )


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """Kill the shell and every child it started.

    Children outliving the shell would hold its pipes open and keep
    ``wait()`` from returning.
    """
    if not _IS_POSIX:
        process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class RunProcessArgs(ToolArgs):
    command: str = Field(description="The shell command to execute in the working directory")
    timeout: int | None = Field(default=None, ge=1, description="The timeout in milliseconds")


class RunProcessTool(BaseTool):
    name = "run_process"
    description = (
        "Run a shell command in the working directory. Commands that are not "
        "trusted require user approval."
    )
    args_model = RunProcessArgs

    async def execute(self, args: RunProcessArgs) -> str:
        command = args.command.strip()
        is_valid, error = validate_command(command)
        if not is_valid:
            return tool_result(ToolStatus.ERROR, error)

        if not is_trusted_command(command, self.context.settings.trusted_commands):
            await self.context.require_approval(
                f"Do you want to run: {command}?",
                command,
                denied_message="Command execution was not approved by the user",
            )

        timeout_ms = args.timeout or self.context.settings.process_timeout_ms
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(self.fs.root),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=_IS_POSIX,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=timeout_ms / 1000
            )
        except TimeoutError:
            _kill_process_group(process)
            await process.wait()
            logger.warning("process_timed_out", command=command, timeout_ms=timeout_ms)
            return tool_result(
                ToolStatus.ERROR,
                f"Command timed out after {timeout_ms}ms",
                command=command,
            )

        exit_code = process.returncode
        out = sanitize_output(stdout.decode(errors="replace"), MAX_COMMAND_OUTPUT_CHARS)
        err = sanitize_output(stderr.decode(errors="replace"), MAX_COMMAND_OUTPUT_CHARS)

        if self.context.event_bus is not None:
            await self.context.event_bus.emit(
                EventType.COMMAND_COMPLETE,
                command=command,
                exit_code=exit_code,
            )

        status = ToolStatus.SUCCESS if exit_code == 0 else ToolStatus.ERROR
        message = (
            "Command executed successfully"
            if exit_code == 0
            else f"Command exited with code {exit_code}"
        )
        return tool_result(status, message, exit_code=exit_code, stdout=out, stderr=err)


# =========================================================================
# Toolset
# =========================================================================


def build_toolset(context: ToolContext, names: list[str] | None = None) -> list[BaseTool]:
    """Build the executor's fixed toolset, optionally restricted to ``names``.

    The order is stable: read_file, find_files, list_files, list_directories,
    edit_file, write_file, patch_file, run_process.
    """
    from agents.patching import EditFileTool, PatchFileTool

    tool_classes: list[type[BaseTool]] = [
        ReadFileTool,
        FindFilesTool,
        ListFilesTool,
        ListDirectoriesTool,
        EditFileTool,
        WriteFileTool,
        PatchFileTool,
        RunProcessTool,
    ]
    tools = [cls(context) for cls in tool_classes]
    if names is not None:
        tools = [t for t in tools if t.name in names]
    return tools
