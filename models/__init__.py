"""Models module for Pydantic schemas and persistence.

This module exposes the plan, validation and history models shared by the
planner, the executor and the interactive session.
"""

from models.schemas import (
    ChatMessage,
    ComplexityAssessmentParams,
    ComplexityAssessmentResult,
    ComplexityFactors,
    ComplexityLevel,
    ContextProfile,
    Dependency,
    FileToRead,
    ImplementationDetails,
    LLMTier,
    PlanDraft,
    PlanDraftSubtask,
    ProjectFile,
    Subtask,
    TaskPlan,
    TaskStatus,
    TaskType,
    ValidationResult,
    ValidationStatus,
    ValidationVerdict,
)

__all__ = [
    "ChatMessage",
    "ComplexityAssessmentParams",
    "ComplexityAssessmentResult",
    "ComplexityFactors",
    "ComplexityLevel",
    "ContextProfile",
    "Dependency",
    "FileToRead",
    "ImplementationDetails",
    "LLMTier",
    "PlanDraft",
    "PlanDraftSubtask",
    "ProjectFile",
    "Subtask",
    "TaskPlan",
    "TaskStatus",
    "TaskType",
    "ValidationResult",
    "ValidationStatus",
    "ValidationVerdict",
]
