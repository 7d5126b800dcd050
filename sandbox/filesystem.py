"""File system access confined to a working root.

FileSystemHelper is the only place the file tools touch the disk. Every
method resolves its path through ``ensure_within_root`` first, and listings
honour the root's ``.gitignore``.
"""

import fnmatch
import re
from pathlib import Path

import structlog

from sandbox.security import PathSandboxError, ensure_within_root

logger = structlog.get_logger(__name__)


class FileSystemHelper:
    """Gitignore-aware file access inside a single working root.

    Attributes:
        root: Resolved working root.
        ignore_patterns: Lower-cased gitignore patterns that exclude paths.
        negated_patterns: Lower-cased ``!pattern`` entries that re-include paths.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()
        self.ignore_patterns: list[str] = []
        self.negated_patterns: list[str] = []

    def load_gitignore(self, gitignore_path: str | Path | None = None) -> None:
        """Load ignore patterns from ``.gitignore`` if it exists.

        Blank lines and comments are skipped; ``!pattern`` lines become
        negations. A missing file leaves the pattern lists empty.
        """
        path = Path(gitignore_path) if gitignore_path else self.root / ".gitignore"
        if not path.is_file():
            return

        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.warning("gitignore_read_failed", path=str(path), error=str(e))
            return

        self.ignore_patterns = []
        self.negated_patterns = []
        for raw in lines:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("!"):
                self.negated_patterns.append(line[1:].lower())
            else:
                self.ignore_patterns.append(line.lower())

    @staticmethod
    def _matches(relative: str, pattern: str) -> bool:
        pattern = pattern.lstrip("/")
        if not pattern:
            return False

        if pattern.endswith("/"):
            directory = pattern[:-1]
            if relative == directory or relative.startswith(directory + "/"):
                return True
            # A bare directory name matches at any depth
            return "/" not in directory and directory in relative.split("/")

        if relative == pattern or relative.startswith(pattern + "/"):
            return True
        if fnmatch.fnmatchcase(relative, pattern):
            return True
        if "/" not in pattern:
            return any(fnmatch.fnmatchcase(part, pattern) for part in relative.split("/"))
        return False

    def should_exclude(self, path: str | Path) -> bool:
        """Return True if ``path`` is ignored by ``.git`` or the gitignore patterns.

        Matching is case-insensitive. Negated patterns win over ignore patterns.
        """
        try:
            relative = Path(path).resolve().relative_to(self.root).as_posix()
        except ValueError:
            relative = Path(path).as_posix()
        relative = relative.lower()

        if relative == ".git" or relative.startswith(".git/"):
            return True

        if any(self._matches(relative, p) for p in self.negated_patterns):
            return False
        return any(self._matches(relative, p) for p in self.ignore_patterns)

    def resolve(self, path: str) -> Path:
        """Resolve ``path`` inside the root, raising PathSandboxError otherwise."""
        return ensure_within_root(self.root, path)

    def relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def list_files_recursively(
        self,
        directory: str | Path,
        max_depth: int = 4,
        include_dirs: bool = False,
        extension: str | None = None,
        _depth: int = 0,
    ) -> list[str]:
        """List files under ``directory`` as root-relative POSIX paths.

        Args:
            directory: Directory to list (already inside the root).
            max_depth: Levels of subdirectories to descend into (0 = only
                the directory itself).
            include_dirs: Also list directories, with a trailing slash.
            extension: Only keep files with this extension (no dot,
                case-insensitive).

        Raises:
            NotADirectoryError: If ``directory`` is not a directory.
        """
        base = Path(directory)
        if not base.is_dir():
            raise NotADirectoryError(f"Directory {directory} does not exist or cannot be accessed")

        ext = extension.lower().lstrip(".") if extension else None
        result: list[str] = []
        for entry in sorted(base.iterdir()):
            if self.should_exclude(entry) or not entry.resolve().is_relative_to(self.root):
                continue
            rel = self.relative(entry)
            if entry.is_dir():
                if include_dirs:
                    result.append(f"{rel}/")
                if _depth < max_depth:
                    result.extend(
                        self.list_files_recursively(
                            entry, max_depth, include_dirs, extension, _depth + 1
                        )
                    )
            elif entry.is_file():
                if ext and entry.suffix.lower().lstrip(".") != ext:
                    continue
                result.append(rel)
        return result

    def list_directories_recursively(
        self,
        directory: str | Path,
        max_depth: int = 1,
        _depth: int = 0,
    ) -> list[str]:
        """List directories under ``directory`` with a trailing slash."""
        base = Path(directory)
        if not base.is_dir():
            raise NotADirectoryError(f"{directory} is not a directory or does not exist")

        result: list[str] = []
        for entry in sorted(base.iterdir()):
            if not entry.is_dir() or self.should_exclude(entry):
                continue
            if not entry.resolve().is_relative_to(self.root):
                continue
            result.append(f"{self.relative(entry)}/")
            if _depth < max_depth:
                result.extend(self.list_directories_recursively(entry, max_depth, _depth + 1))
        return result

    def find_files(
        self,
        pattern: str,
        directory: str | Path | None = None,
        use_regex: bool = False,
        recursive: bool = True,
        extension: str | None = None,
    ) -> list[str]:
        """Find files by glob or regex, skipping ignored and dot files.

        Returns paths relative to ``directory`` (the root by default).
        """
        base = Path(directory) if directory else self.root
        if not base.is_dir():
            raise NotADirectoryError(f"Directory {directory} does not exist")

        if use_regex:
            glob_pattern = "**/*" if recursive else "*"
            if extension:
                glob_pattern = f"{glob_pattern}.{extension}"
        else:
            glob_pattern = pattern
            if extension and "." not in pattern:
                glob_pattern = f"{pattern}*.{extension}"
            if not recursive:
                glob_pattern = glob_pattern.replace("**/", "")
            elif "/" not in glob_pattern and not glob_pattern.startswith("**"):
                glob_pattern = f"**/{glob_pattern}"

        regex = re.compile(pattern) if use_regex else None
        matches: list[str] = []
        for path in sorted(base.glob(glob_pattern)):
            if not path.is_file() or self.should_exclude(path):
                continue
            if not path.resolve().is_relative_to(self.root):
                continue
            rel = path.relative_to(base).as_posix()
            if any(part.startswith(".") for part in rel.split("/")):
                continue
            if regex is not None and not regex.search(rel):
                continue
            matches.append(rel)
        return matches

    def read_file(self, path: str, encoding: str = "utf-8") -> str:
        """Read a file inside the root.

        Raises:
            PathSandboxError: If the path escapes the root.
            FileNotFoundError: If the file does not exist.
        """
        resolved = self.resolve(path)
        if not resolved.is_file():
            raise FileNotFoundError(f"File {path} does not exist")
        return resolved.read_text(encoding=encoding)

    def write_file(self, path: str, content: str, encoding: str = "utf-8") -> Path:
        """Write a file inside the root, creating parent directories."""
        resolved = self.resolve(path)
        resolved.parent.mkdir(parents=True, exist_ok=True)
        resolved.write_text(content, encoding=encoding)
        return resolved

    def exists(self, path: str) -> bool:
        try:
            return self.resolve(path).exists()
        except PathSandboxError:
            return False
