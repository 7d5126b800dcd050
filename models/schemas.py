"""Pydantic schemas for plans, subtasks, validation results and history.

All models use Pydantic v2. Enums are StrEnums so values round-trip through
JSON (history store, structured LLM output) unchanged.
"""

import time
from enum import StrEnum
from pathlib import PurePath
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class TaskType(StrEnum):
    """Kind of work a request asks for."""

    GENERATION = "generation"
    REFACTORING = "refactoring"
    EXPLANATION = "explanation"


class ComplexityLevel(StrEnum):
    """Complexity classification driving decomposition depth."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LLMTier(StrEnum):
    """Which class of backend executes a (sub)task."""

    LOCAL = "local"
    REMOTE = "remote"
    HYBRID = "hybrid"


class TaskStatus(StrEnum):
    """Subtask lifecycle status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ValidationStatus(StrEnum):
    """Outcome of validating an executed plan."""

    PASSED = "passed"
    FAILED = "failed"
    PENDING = "pending"


# =========================================================================
# Complexity assessment
# =========================================================================


class ComplexityAssessmentParams(BaseModel):
    """Input factors for the complexity assessor."""

    task_type: TaskType
    scope_size: int = Field(ge=0)
    dependencies_count: int = Field(ge=0)
    technology_complexity: int = Field(ge=0)
    prior_success_rate: float | None = Field(default=None, ge=0.0, le=1.0)


class ComplexityFactors(BaseModel):
    """Per-factor normalized scores, each in [0, 100]."""

    task_type: float
    scope_size: float
    dependencies_count: float
    technology_complexity: float
    prior_success_rate: float


class ComplexityAssessmentResult(BaseModel):
    """Output of the complexity assessor."""

    level: ComplexityLevel
    score: float = Field(ge=0.0, le=100.0)
    factors: ComplexityFactors
    explanation: str


# =========================================================================
# Plans
# =========================================================================


class FileToRead(BaseModel):
    """A file a subtask should see before it starts."""

    path: str
    syntax: str = ""

    def model_post_init(self, __context: object) -> None:
        if not self.syntax:
            self.syntax = PurePath(self.path).suffix.lstrip(".") or "text"


class ImplementationDetails(BaseModel):
    """What an execution run changed."""

    summary: str = ""
    files_changed: list[str] = Field(default_factory=list)

    def merge(self, other: "ImplementationDetails") -> "ImplementationDetails":
        files = list(self.files_changed)
        files.extend(f for f in other.files_changed if f not in files)
        summary = "\n\n".join(s for s in (self.summary, other.summary) if s)
        return ImplementationDetails(summary=summary, files_changed=files)


class Subtask(BaseModel):
    """Atomic unit of LLM-executed work within a TaskPlan."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    specification: str
    complexity: ComplexityLevel
    llm_tier: LLMTier
    dependencies: list[str] = Field(default_factory=list)
    files_to_read: list[FileToRead] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    implementation_details: ImplementationDetails | None = None


class ValidationResult(BaseModel):
    """Result of validating an executed plan."""

    status: ValidationStatus
    message: str
    failed_tasks: list[str] = Field(default_factory=list)
    suggested_fixes: str | None = None


class ValidationVerdict(BaseModel):
    """Structured output requested from the validator LLM."""

    status: Literal["passed", "failed"]
    message: str
    failed_tasks: list[str] = Field(default_factory=list)
    suggested_fixes: str | None = None

    def to_result(self) -> ValidationResult:
        return ValidationResult(
            status=ValidationStatus(self.status),
            message=self.message,
            failed_tasks=self.failed_tasks,
            suggested_fixes=self.suggested_fixes,
        )


class TaskPlan(BaseModel):
    """A request decomposed into ordered subtasks."""

    original_request: str
    overall_complexity: ComplexityLevel
    subtasks: list[Subtask]
    execution_order: list[str]
    assessment: ComplexityAssessmentResult | None = None
    validation_instructions: str | None = None
    validation_result: ValidationResult | None = None
    implementation_details: ImplementationDetails | None = None
    completed_at: float | None = None

    def get_subtask(self, subtask_id: str) -> Subtask | None:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None

    def merge_implementation_details(self, details: ImplementationDetails | None) -> None:
        if details is None:
            return
        if self.implementation_details is None:
            self.implementation_details = details
        else:
            self.implementation_details = self.implementation_details.merge(details)


class PlanDraftSubtask(BaseModel):
    """A subtask as drafted by the planning LLM."""

    id: str
    specification: str
    complexity: ComplexityLevel = ComplexityLevel.MEDIUM
    dependencies: list[str] = Field(default_factory=list)
    files_to_read: list[str] = Field(default_factory=list)


class PlanDraft(BaseModel):
    """Structured output requested from the planning LLM."""

    subtasks: list[PlanDraftSubtask] = Field(min_length=1)
    execution_order: list[str] = Field(default_factory=list)
    validation_instructions: str | None = None


# =========================================================================
# Project context and history
# =========================================================================


class ProjectFile(BaseModel):
    """A file in the project inventory."""

    path: str
    language: str
    size: int


class Dependency(BaseModel):
    name: str
    version: str = ""


class ContextProfile(BaseModel):
    """What the planner knows about the project it works in."""

    project_root: str
    current_directory: str
    files: list[ProjectFile] = Field(default_factory=list)
    dependencies: list[Dependency] = Field(default_factory=list)
    technology_stack: list[str] = Field(default_factory=list)
    referenced_files: list[str] = Field(default_factory=list)

    def to_context_string(self) -> str:
        lines = [f"Project root: {self.project_root}"]
        if self.technology_stack:
            lines.append(f"Technology stack: {', '.join(self.technology_stack)}")
        if self.dependencies:
            names = ", ".join(d.name for d in self.dependencies[:30])
            lines.append(f"Dependencies ({len(self.dependencies)}): {names}")
        lines.append(f"Files in project: {len(self.files)}")
        if self.referenced_files:
            lines.append(f"Referenced files: {', '.join(self.referenced_files)}")
        return "\n".join(lines)


class ChatMessage(BaseModel):
    """One entry of the persisted chat history."""

    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: float = Field(default_factory=time.time)
