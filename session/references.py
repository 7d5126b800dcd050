"""``@name`` / ``@path`` reference handling.

A reference is ``@`` at the start of a word followed by a bare token, a
double-quoted path or a single-quoted path::

    explain @src/app.py and @"docs/user guide.md" using @review-checklist

A token naming a saved prompt expands to the prompt text; otherwise it is
read as a file inside the working root and replaced by a ``<file>`` block.
"""

import re
from collections.abc import Mapping

import structlog

from agents.tools import render_file_for_llm
from sandbox.filesystem import FileSystemHelper
from sandbox.security import PathSandboxError

logger = structlog.get_logger(__name__)

REFERENCE_PATTERN = re.compile(r"""(?<!\S)@(?:"([^"]+)"|'([^']+)'|([^\s"']+))""")

TRAILING_PUNCTUATION = ".,;:!?)"


def _split_token(match: re.Match[str]) -> tuple[str, str]:
    """Return (reference, trailing text) for a match."""
    quoted = match.group(1) or match.group(2)
    if quoted:
        return quoted, ""
    token = match.group(3)
    stripped = token.rstrip(TRAILING_PUNCTUATION)
    return stripped, token[len(stripped):]


def extract_references(message: str) -> list[str]:
    """Referenced names and paths in order of appearance, without duplicates."""
    references: list[str] = []
    for match in REFERENCE_PATTERN.finditer(message):
        reference, _ = _split_token(match)
        if reference and reference not in references:
            references.append(reference)
    return references


def expand_references(
    message: str,
    fs: FileSystemHelper,
    prompts: Mapping[str, str] | None = None,
) -> str:
    """Replace each reference with a saved prompt or the referenced file.

    References that are neither a saved prompt nor a readable file inside
    the root are left as typed.
    """
    prompts = prompts or {}

    def _expand(match: re.Match[str]) -> str:
        reference, trailing = _split_token(match)
        if not reference:
            return match.group(0)
        if reference in prompts:
            return prompts[reference] + trailing
        try:
            content = fs.read_file(reference)
        except (OSError, UnicodeDecodeError, PathSandboxError) as e:
            logger.warning("file_reference_unreadable", reference=reference, error=str(e))
            return match.group(0)
        return render_file_for_llm(reference, content) + trailing

    return REFERENCE_PATTERN.sub(_expand, message)
