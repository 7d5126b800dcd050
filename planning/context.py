"""Project context profile and complexity-factor estimation.

The profile is an inventory of the working tree (files with their language,
declared dependencies, detected technology stack) that the planner hands to
the complexity assessor and, when LLM planning is on, to the planning model.
"""

import json
import re
import tomllib
from pathlib import Path

import structlog

from models.schemas import (
    ComplexityAssessmentParams,
    ContextProfile,
    Dependency,
    ProjectFile,
    TaskPlan,
    TaskType,
    ValidationStatus,
)
from sandbox.filesystem import FileSystemHelper

logger = structlog.get_logger(__name__)

PROFILE_MAX_DEPTH = 8

LANGUAGE_BY_EXTENSION = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
    ".c": "c",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".go": "go",
    ".rb": "ruby",
    ".php": "php",
    ".rs": "rust",
    ".html": "html",
    ".css": "css",
    ".json": "json",
    ".md": "markdown",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".xml": "xml",
    ".sh": "shell",
    ".bat": "batch",
    ".ps1": "powershell",
}

EXTENSION_TECHNOLOGIES = {
    ".py": "Python",
    ".java": "Java",
    ".go": "Go",
    ".rb": "Ruby",
    ".php": "PHP",
    ".cs": "C#",
    ".rs": "Rust",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
}

FRAMEWORK_DEPENDENCIES = {
    "react": "React",
    "vue": "Vue.js",
    "angular": "Angular",
    "express": "Express",
    "next": "Next.js",
    "django": "Django",
    "flask": "Flask",
    "fastapi": "FastAPI",
}

EXPLANATION_KEYWORDS = ("explain", "what is", "what does", "how does", "why does", "describe")
REFACTORING_KEYWORDS = ("refactor", "rename", "restructure", "clean up", "simplify", "extract", "reorganize")

_CLAUSE_SPLIT = re.compile(r"\.(?:\s+|$)|[;\n]+|\band\b|\bthen\b", re.IGNORECASE)
_REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9_.\-\[\]]+)\s*(.*)$")


def file_language(path: str) -> str:
    return LANGUAGE_BY_EXTENSION.get(Path(path).suffix.lower(), "plaintext")


def _package_json_dependencies(path: Path) -> list[Dependency]:
    data = json.loads(path.read_text(encoding="utf-8"))
    deps: list[Dependency] = []
    for section in ("dependencies", "devDependencies"):
        for name, version in (data.get(section) or {}).items():
            deps.append(Dependency(name=name, version=str(version)))
    return deps


def _requirement(line: str) -> Dependency | None:
    line = line.split("#", 1)[0].strip()
    if not line or line.startswith("-"):
        return None
    match = _REQUIREMENT_NAME.match(line)
    if match is None:
        return None
    name = match.group(1).split("[", 1)[0]
    return Dependency(name=name, version=match.group(2).strip())


def _python_dependencies(root: Path) -> list[Dependency]:
    deps: list[Dependency] = []
    pyproject = root / "pyproject.toml"
    if pyproject.is_file():
        data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
        for line in data.get("project", {}).get("dependencies", []):
            dep = _requirement(line)
            if dep:
                deps.append(dep)
    requirements = root / "requirements.txt"
    if requirements.is_file():
        for line in requirements.read_text(encoding="utf-8").splitlines():
            dep = _requirement(line)
            if dep:
                deps.append(dep)
    return deps


def parse_dependencies(root: Path) -> list[Dependency]:
    """Dependencies declared in package.json, pyproject.toml and requirements.txt.

    A manifest that cannot be parsed is logged and skipped.
    """
    deps: list[Dependency] = []
    package_json = root / "package.json"
    if package_json.is_file():
        try:
            deps.extend(_package_json_dependencies(package_json))
        except (OSError, ValueError) as e:
            logger.warning("dependency_manifest_unreadable", path=str(package_json), error=str(e))
    try:
        deps.extend(_python_dependencies(root))
    except (OSError, ValueError) as e:
        logger.warning("dependency_manifest_unreadable", path=str(root), error=str(e))

    seen: set[str] = set()
    unique = []
    for dep in deps:
        key = dep.name.lower()
        if key not in seen:
            seen.add(key)
            unique.append(dep)
    return unique


def detect_technology_stack(
    root: Path,
    files: list[ProjectFile],
    dependencies: list[Dependency],
) -> list[str]:
    stack: list[str] = []

    def add(item: str) -> None:
        if item not in stack:
            stack.append(item)

    if (root / "package.json").is_file():
        add("Node.js")
    names = {dep.name.lower() for dep in dependencies}
    for dep_name, technology in FRAMEWORK_DEPENDENCIES.items():
        if dep_name in names:
            add(technology)

    extensions = {Path(f.path).suffix.lower() for f in files}
    for extension, technology in EXTENSION_TECHNOLOGIES.items():
        if extension in extensions:
            add(technology)

    if (root / "Dockerfile").is_file() or (root / "docker-compose.yml").is_file():
        add("Docker")
    if (root / "kubernetes").is_dir():
        add("Kubernetes")
    return stack


def build_context_profile(
    fs: FileSystemHelper,
    current_directory: str | Path | None = None,
    referenced_files: list[str] | None = None,
) -> ContextProfile:
    """Inventory the working tree behind ``fs``.

    Args:
        fs: Helper bound to the project root (gitignore rules applied).
        current_directory: Directory the user started from; defaults to the root.
        referenced_files: Files the user referenced with ``@path``.
    """
    files: list[ProjectFile] = []
    for rel in fs.list_files_recursively(fs.root, max_depth=PROFILE_MAX_DEPTH):
        try:
            size = (fs.root / rel).stat().st_size
        except OSError as e:
            logger.debug("profile_stat_failed", path=rel, error=str(e))
            continue
        files.append(ProjectFile(path=rel, language=file_language(rel), size=size))

    dependencies = parse_dependencies(fs.root)
    profile = ContextProfile(
        project_root=str(fs.root),
        current_directory=str(current_directory or fs.root),
        files=files,
        dependencies=dependencies,
        technology_stack=detect_technology_stack(fs.root, files, dependencies),
        referenced_files=list(referenced_files or []),
    )
    logger.debug(
        "context_profile_built",
        files=len(files),
        dependencies=len(dependencies),
        technology_stack=profile.technology_stack,
    )
    return profile


def infer_task_type(request: str) -> TaskType:
    text = request.lower()
    if any(keyword in text for keyword in REFACTORING_KEYWORDS):
        return TaskType.REFACTORING
    if any(keyword in text for keyword in EXPLANATION_KEYWORDS):
        return TaskType.EXPLANATION
    return TaskType.GENERATION


def prior_success_rate(plans: list[TaskPlan]) -> float | None:
    """Share of validated plans that passed, or None without history."""
    validated = [p for p in plans if p.validation_result is not None]
    if not validated:
        return None
    passed = sum(1 for p in validated if p.validation_result.status == ValidationStatus.PASSED)
    return passed / len(validated)


def estimate_assessment_params(
    request: str,
    profile: ContextProfile,
    success_rate: float | None = None,
) -> ComplexityAssessmentParams:
    """Derive assessor factors from the request text and project profile.

    ``request`` is the text as typed, before ``@path`` references are
    expanded. Scope counts referenced files plus the clauses of the request.
    """
    clauses = [c for c in _CLAUSE_SPLIT.split(request) if c and c.strip()]
    return ComplexityAssessmentParams(
        task_type=infer_task_type(request),
        scope_size=max(1, len(profile.referenced_files) + len(clauses)),
        dependencies_count=len(profile.dependencies),
        technology_complexity=len(profile.technology_stack),
        prior_success_rate=success_rate,
    )
