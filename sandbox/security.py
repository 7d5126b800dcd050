"""Security validation for file tools and process execution.

This module keeps every path-touching tool inside the working root and
screens commands before ``run_process`` hands them to the shell.
"""

import re
import shlex
from pathlib import Path

# Patterns that are never executed, even with user approval.
BLOCKED_COMMAND_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\brm\s+(-[a-zA-Z]*[rf][a-zA-Z]*\s+)+(/|~|\$HOME)(\s|$)"),
    re.compile(r"\bmkfs(\.\w+)?\b"),
    re.compile(r"\bdd\s+.*\bof=/dev/"),
    re.compile(r":\(\)\s*\{\s*:\|:&\s*\};:"),
    re.compile(r"\b(shutdown|reboot|halt|poweroff)\b"),
    re.compile(r">\s*/dev/sd[a-z]"),
    re.compile(r"\bchmod\s+(-R\s+)?777\s+/(\s|$)"),
]

# Shell operators that chain a second command onto a trusted prefix.
CHAINING_OPERATORS: list[str] = ["|", "&&", "||", ";", "$(", "`", "\n"]


class PathSandboxError(Exception):
    """Raised when a path resolves outside the working root."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"{reason}: {path}")


def _split_command_parts(command: str) -> list[str]:
    """Split a shell command into parts.

    Falls back to whitespace splitting if shell parsing fails.
    """
    try:
        return shlex.split(command, posix=True)
    except ValueError:
        return command.strip().split()


def validate_command(command: str) -> tuple[bool, str]:
    """Validate a shell command before ``run_process`` executes it.

    Args:
        command: The shell command string to validate.

    Returns:
        A tuple of (is_valid, error_message).
        If valid, error_message is an empty string.

    Examples:
        >>> validate_command("npm test")
        (True, "")
        >>> validate_command("rm -rf /")
        (False, "Blocked command pattern detected: rm -rf /")
    """
    if not command or not command.strip():
        return False, "Command cannot be empty"

    if "\x00" in command:
        return False, "Command contains null byte"

    for pattern in BLOCKED_COMMAND_PATTERNS:
        match = pattern.search(command)
        if match:
            return False, f"Blocked command pattern detected: {match.group(0).strip()}"

    return True, ""


def is_trusted_command(command: str, trusted_prefixes: list[str]) -> bool:
    """Return True if the command starts with a trusted prefix and chains nothing.

    A prefix matches on whole words: ``git status`` trusts ``git status -s``
    but not ``git statusx``.
    """
    if any(op in command for op in CHAINING_OPERATORS):
        return False

    parts = _split_command_parts(command)
    if not parts:
        return False

    for prefix in trusted_prefixes:
        prefix_parts = prefix.split()
        if prefix_parts and parts[: len(prefix_parts)] == prefix_parts:
            return True
    return False


def validate_path(root: str | Path, path: str) -> tuple[bool, str, str]:
    """Validate a path against the working root.

    Relative paths are joined to the root. Absolute paths are accepted only
    when they resolve inside it. ``..`` components are allowed as long as the
    resolved path stays inside the root. Symlinks are followed before the
    containment check, so a link pointing outside is rejected.

    Args:
        root: The working root directory.
        path: The path the tool wants to touch.

    Returns:
        A tuple of (is_valid, error_message, resolved_absolute_path).
        If invalid, resolved_absolute_path is empty.

    Examples:
        >>> validate_path("/work", "src/app.py")
        (True, "", "/work/src/app.py")
        >>> validate_path("/work", "../etc/passwd")
        (False, "Path is outside the working directory: ../etc/passwd", "")
    """
    if not path or not str(path).strip():
        return False, "Path cannot be empty", ""

    if "\x00" in path:
        return False, "Path contains null byte", ""

    try:
        root_path = Path(root).resolve()
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = root_path / candidate
        resolved = candidate.resolve()
    except (ValueError, OSError, RuntimeError) as e:
        return False, f"Invalid path: {e}", ""

    try:
        resolved.relative_to(root_path)
    except ValueError:
        return False, f"Path is outside the working directory: {path}", ""

    return True, "", str(resolved)


def ensure_within_root(root: str | Path, path: str) -> Path:
    """Resolve ``path`` inside ``root`` or raise PathSandboxError."""
    is_valid, error, resolved = validate_path(root, path)
    if not is_valid:
        raise PathSandboxError(path, error.split(":")[0])
    return Path(resolved)


def sanitize_output(output: str, max_length: int = 50000) -> str:
    """Truncate excessively long command output.

    Args:
        output: The raw command output string.
        max_length: Maximum allowed length before truncation.

    Returns:
        The sanitized output string.
    """
    if not output:
        return ""

    if len(output) > max_length:
        truncated_chars = len(output) - max_length
        output = (
            output[:max_length]
            + f"\n... [truncated, {truncated_chars} chars omitted]"
        )

    return output
