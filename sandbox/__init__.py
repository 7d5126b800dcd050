"""Working-root sandbox for file tools and process execution.

This module provides path containment, command screening and the
gitignore-aware FileSystemHelper used by every file tool.
"""

from sandbox.filesystem import FileSystemHelper
from sandbox.security import (
    PathSandboxError,
    ensure_within_root,
    is_trusted_command,
    sanitize_output,
    validate_command,
    validate_path,
)

__all__ = [
    "FileSystemHelper",
    "PathSandboxError",
    "ensure_within_root",
    "is_trusted_command",
    "sanitize_output",
    "validate_command",
    "validate_path",
]
