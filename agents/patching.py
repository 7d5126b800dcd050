"""Line-range edits and content-addressed patches.

The engine functions (``apply_line_edit``, ``apply_content_patch``) are pure:
they take the current file text and return the new text or raise. The tools
wrap them with path containment, approval and a single write, so a rejected
edit or patch never leaves a partially written file.
"""

from dataclasses import dataclass

import structlog
from pydantic import Field

from agents.tools import (
    BaseTool,
    ToolArgs,
    ToolStatus,
    render_file_for_llm,
    tool_result,
)

logger = structlog.get_logger(__name__)


class EditRangeError(ValueError):
    """Raised when edit line numbers fall outside the file or are reversed."""

    def __init__(self, message: str, suggestion: str) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class ContentMismatchError(Exception):
    """Raised when expected content is not where (or anywhere) it should be."""

    def __init__(
        self,
        message: str,
        expected: str,
        actual: str | None = None,
        line_number: int | None = None,
        change_index: int | None = None,
    ) -> None:
        self.message = message
        self.expected = expected
        self.actual = actual
        self.line_number = line_number
        self.change_index = change_index
        super().__init__(message)


@dataclass
class LineEditOutcome:
    content: str
    lines_replaced: int
    new_lines_count: int


@dataclass
class PatchChange:
    old_content: str
    new_content: str


def _line_matches(actual: str, expected: str) -> bool:
    return actual.rstrip("\r") == expected.rstrip("\r")


def apply_line_edit(
    content: str,
    start_line: int,
    start_expected: str,
    end_line: int,
    end_expected: str,
    new_content: str,
) -> LineEditOutcome:
    """Replace the inclusive 1-based line range ``[start_line, end_line]``.

    Both boundary lines must equal the expected content exactly, ignoring
    only a trailing carriage return.

    Raises:
        EditRangeError: If the range is out of bounds or reversed.
        ContentMismatchError: If a boundary line does not match.
    """
    lines = content.split("\n")
    line_count = len(lines)

    if not 1 <= start_line <= line_count:
        raise EditRangeError(
            f"Starting line number {start_line} is out of bounds (file has {line_count} lines)",
            "Provide a valid line number within the file bounds",
        )
    if not 1 <= end_line <= line_count:
        raise EditRangeError(
            f"Ending line number {end_line} is out of bounds (file has {line_count} lines)",
            "Provide a valid line number within the file bounds",
        )
    if end_line < start_line:
        raise EditRangeError(
            f"Ending line number {end_line} is before starting line number {start_line}",
            "Ensure the ending line number is greater than or equal to the starting line number",
        )

    if not _line_matches(lines[start_line - 1], start_expected):
        raise ContentMismatchError(
            "Content at starting line does not match expected content",
            expected=start_expected,
            actual=lines[start_line - 1],
            line_number=start_line,
        )
    if not _line_matches(lines[end_line - 1], end_expected):
        raise ContentMismatchError(
            "Content at ending line does not match expected content",
            expected=end_expected,
            actual=lines[end_line - 1],
            line_number=end_line,
        )

    replacement = new_content.split("\n")
    updated = lines[: start_line - 1] + replacement + lines[end_line:]
    return LineEditOutcome(
        content="\n".join(updated),
        lines_replaced=end_line - start_line + 1,
        new_lines_count=len(replacement),
    )


def apply_content_patch(content: str, changes: list[PatchChange]) -> str:
    """Apply ``changes`` in order, each located by content in the current text.

    Every lookup runs against the text as it stands after the previous
    changes, so a change that grows or shrinks the file never shifts a later
    one. The first occurrence of each ``old_content`` is replaced.

    Raises:
        ContentMismatchError: If any ``old_content`` is not found. The input
            text is not modified.
    """
    current = content
    for index, change in enumerate(changes):
        position = current.find(change.old_content)
        if position == -1 or not change.old_content:
            raise ContentMismatchError(
                "Could not find the specified content",
                expected=change.old_content,
                change_index=index,
            )
        current = (
            current[:position]
            + change.new_content
            + current[position + len(change.old_content):]
        )
    return current


# =========================================================================
# Tools
# =========================================================================


class EditFileArgs(ToolArgs):
    file_path: str = Field(
        description=(
            "The file path to edit (relative to working directory). Pay attention "
            "to the file path within <file> tags if provided in the prompt."
        )
    )
    starting_position_line_number: int = Field(
        ge=1, description="The line number where modification should start"
    )
    starting_position_current_content: str = Field(
        description="The current content at the starting line. Used to verify the correct position."
    )
    end_position_line_number: int = Field(
        ge=1, description="The line number where modification should end"
    )
    end_position_current_content: str = Field(
        description="The current content at the ending line. Used to verify the correct position."
    )
    new_content: str = Field(
        description="The new content to replace everything from start to end position (inclusive)"
    )


class EditFileTool(BaseTool):
    name = "edit_file"
    description = (
        "Edit a file by replacing content between specified line positions. Requires "
        "line numbers and the current content at those lines for verification. "
        "Limited to the working directory."
    )
    args_model = EditFileArgs

    async def execute(self, args: EditFileArgs) -> str:
        resolved = self.fs.resolve(args.file_path)
        relative = self.fs.relative(resolved)
        if not resolved.is_file():
            return tool_result(ToolStatus.ERROR, f"File {args.file_path} does not exist")

        original = self.fs.read_file(relative)
        try:
            outcome = apply_line_edit(
                original,
                args.starting_position_line_number,
                args.starting_position_current_content,
                args.end_position_line_number,
                args.end_position_current_content,
                args.new_content,
            )
        except EditRangeError as e:
            return tool_result(ToolStatus.ERROR, e.message, suggestion=e.suggestion)
        except ContentMismatchError as e:
            return tool_result(
                ToolStatus.ERROR,
                e.message,
                line_number=e.line_number,
                expected_content=e.expected,
                actual_content=e.actual,
                current_file_content=render_file_for_llm(relative, original, with_line_numbers=True),
                suggestion="Make sure the expected content matches exactly, including whitespace and indentation",
            )

        detail = (
            f"File: {relative}\n"
            f"Replacing lines {args.starting_position_line_number}-"
            f"{args.end_position_line_number} ({outcome.lines_replaced} lines) "
            f"with {outcome.new_lines_count} new lines\n\n{args.new_content}"
        )
        await self.context.require_approval(
            f"Do you accept edit to {relative}?",
            detail,
            denied_message="Edit was not approved by the user",
        )

        self.fs.write_file(relative, outcome.content)
        await self.context.record_change(relative, "edit")
        logger.info(
            "file_edited",
            path=relative,
            lines_replaced=outcome.lines_replaced,
            new_lines_count=outcome.new_lines_count,
        )
        return tool_result(
            ToolStatus.SUCCESS,
            f"File {relative} updated successfully",
            lines_replaced=outcome.lines_replaced,
            new_lines_count=outcome.new_lines_count,
            new_content=render_file_for_llm(relative, outcome.content, with_line_numbers=True),
        )


class PatchChangeArgs(ToolArgs):
    old_content: str = Field(
        min_length=1,
        description="The exact current content to replace (may span several lines)",
    )
    new_content: str = Field(description="The content to put in its place")


class PatchFileArgs(ToolArgs):
    file_path: str = Field(description="The file path to patch (relative to working directory)")
    changes: list[PatchChangeArgs] = Field(
        min_length=1,
        description=(
            "Changes applied in order. Each old_content is located by content in the "
            "file as it stands after the previous changes."
        ),
    )


class PatchFileTool(BaseTool):
    name = "patch_file"
    description = (
        "Patch a file by replacing exact content. Each change finds the first "
        "occurrence of old_content and replaces it with new_content. Either all "
        "changes are applied or none. Limited to the working directory."
    )
    args_model = PatchFileArgs

    async def execute(self, args: PatchFileArgs) -> str:
        resolved = self.fs.resolve(args.file_path)
        relative = self.fs.relative(resolved)
        if not resolved.is_file():
            return tool_result(ToolStatus.ERROR, f"File {args.file_path} does not exist")

        original = self.fs.read_file(relative)
        changes = [PatchChange(c.old_content, c.new_content) for c in args.changes]
        try:
            patched = apply_content_patch(original, changes)
        except ContentMismatchError as e:
            return tool_result(
                ToolStatus.ERROR,
                f"{e.message} in {relative} (change #{(e.change_index or 0) + 1}). No changes were applied.",
                failed_content=e.expected,
                changes_applied=0,
                current_file_content=render_file_for_llm(relative, original, with_line_numbers=True),
                suggestion="Copy old_content verbatim from the current file, including whitespace",
            )

        detail = f"File: {relative}\nApplying {len(changes)} change(s):\n\n" + "\n\n".join(
            f"--- change #{i} ---\n- {c.old_content}\n+ {c.new_content}"
            for i, c in enumerate(changes, 1)
        )
        await self.context.require_approval(
            f"Do you accept patch to {relative}?",
            detail,
            denied_message="Patch operation was not approved by the user",
        )

        self.fs.write_file(relative, patched)
        await self.context.record_change(relative, "patch")
        logger.info("file_patched", path=relative, changes_applied=len(changes))
        return tool_result(
            ToolStatus.SUCCESS,
            f"File {relative} patched successfully with {len(changes)} changes.",
            changes_applied=len(changes),
        )
