"""Prompt templates for the executor, validator, planner and chat.

This module contains:
- EXECUTOR_SYSTEM_PROMPT: System prompt for subtask execution with file tools
- CHAT_SYSTEM_PROMPT: System prompt for direct (unplanned) responses
- VALIDATION_SYSTEM_PROMPT: System prompt for the validator
- build_task_prompt / build_fix_prompt / build_validation_prompt /
  build_planning_prompt / build_regeneration_feedback: per-call builders
"""

from models.schemas import TaskPlan, ValidationResult

EXECUTOR_SYSTEM_PROMPT = """\
You are an expert software engineer working directly in the user's project.

## Tools
- Inspect before editing: use `list_files`, `list_directories`, `find_files`
  and `read_file` to understand existing code.
- Change existing files with `edit_file` (line range, with the current content
  of the first and last line for verification) or `patch_file` (exact content
  replacement). Use `write_file` for new files or full rewrites.
- `run_process` runs a shell command in the working directory. Keep commands
  short and non-interactive.
- Every tool returns JSON with a `status` field. On `error`, read the message,
  fix the arguments and try again. On `canceled`, the user declined: do not
  retry the same change.

## Discipline
- Make small, targeted edits instead of broad rewrites.
- Never repeat the exact same tool call that just failed.
- Write files with tools rather than printing their content.
- Finish with a short summary of what you changed."""

CHAT_SYSTEM_PROMPT = """\
You are a helpful coding assistant. Answer the user's question directly. \
Use fenced code blocks with a language tag for code."""

VALIDATION_SYSTEM_PROMPT = """\
You are a meticulous reviewer validating that a task plan was implemented.
You may run commands with `run_process` and inspect files with the read tools.
Base every conclusion on evidence from files and command output."""

PLANNING_SYSTEM_PROMPT = """\
You are a senior engineer decomposing a request into an ordered plan of \
small, independently executable subtasks."""


def compose_prompt_sections(*sections: str) -> str:
    """Compose prompt sections into a single deterministic prompt."""
    cleaned = [section.strip() for section in sections if section and section.strip()]
    return "\n\n".join(cleaned)


def build_task_prompt(
    specification: str,
    cwd: str,
    base_prompt: str = "",
    file_contents: str = "",
) -> str:
    """Build the user prompt for one subtask.

    Args:
        specification: What the subtask must accomplish.
        cwd: Working directory shown to the model.
        base_prompt: The request context shared by every subtask.
        file_contents: Preloaded ``<file>`` blocks, if any.
    """
    prompt = (
        "You are working on the following task:\n"
        f'"""\n{specification}\n"""\n\n'
        f"Your current working directory is: '{cwd}'\n\n"
        "Please complete this specific task.\n"
        "Write file using tool rather than output. Keep output only summary of what was done.\n\n"
        f"{base_prompt}"
    )
    if file_contents:
        prompt += f"\n\nRelevant files:\n{file_contents}"
    return prompt.rstrip() + "\n"


def build_fix_prompt(result: ValidationResult, plan: TaskPlan) -> str:
    """Build the prompt asking the executor to repair a failed validation."""
    prompt = "Title: Fix Validation Errors in Task Implementation\n\n"
    prompt += (
        "Context of the task: The current implementation has validation errors "
        "that need to be fixed.\n\n"
    )
    prompt += "Goal: Fix the validation errors in the current implementation.\n\n"
    prompt += f"Validation Error Details:\n{result.message}\n\n"

    if result.failed_tasks:
        prompt += "Failed Tasks:\n"
        prompt += "".join(f"- {task}\n" for task in result.failed_tasks)
        prompt += "\n"

    if result.suggested_fixes:
        prompt += f"Suggested Fixes:\n{result.suggested_fixes}\n\n"

    prompt += f"Original Request: {plan.original_request}\n\n"
    prompt += "Requirements:\n"
    prompt += "1. Apply the suggested fixes to resolve the validation errors\n"
    prompt += "2. Maintain consistency with the existing codebase\n"
    prompt += "3. Ensure all validation errors are addressed\n"
    return prompt


def build_regeneration_feedback(result: ValidationResult, plan: TaskPlan) -> str:
    """Build the new request used when the user asks to re-plan after failures."""
    feedback = (
        "Please fix the following issues with the previous task execution:\n\n"
        f"{result.message}\n\n"
    )
    if result.suggested_fixes:
        feedback += f"Suggested fixes: {result.suggested_fixes}\n\n"
    feedback += f"Original request: {plan.original_request}"
    return feedback


def build_validation_prompt(plan: TaskPlan) -> str:
    """Build the validator prompt for an executed plan."""
    subtasks = "\n".join(
        f"- [{subtask.id}] ({subtask.status.value}) {subtask.specification.splitlines()[0]}"
        for subtask in plan.subtasks
    )
    changed = ""
    if plan.implementation_details and plan.implementation_details.files_changed:
        changed = "\nFiles changed:\n" + "\n".join(
            f"- {path}" for path in plan.implementation_details.files_changed
        )

    return f"""Validate the execution of the following task plan using these validation instructions:

{plan.validation_instructions}

Original request: {plan.original_request}

Subtasks:
{subtasks}
{changed}

Return a JSON object with:
1. status: "passed" if validation passed, "failed" if it failed
2. message: A detailed explanation of the validation results
3. failed_tasks: If failed, the ids of the specific subtasks that failed
4. suggested_fixes: If failed, specific suggestions for fixing the issues

Be thorough in your validation and provide actionable feedback."""


def build_planning_prompt(request: str, context: str, complexity_summary: str) -> str:
    """Build the prompt asking the planning LLM to draft subtasks."""
    return f"""Decompose the following request into subtasks.

Request:
\"\"\"
{request}
\"\"\"

Project context:
{context}

Complexity assessment:
{complexity_summary}

Return a JSON object with:
- subtasks: list of objects with
  - id: short unique identifier
  - specification: what the subtask must do, self-contained
  - complexity: "low", "medium" or "high"
  - dependencies: ids of subtasks that must finish first
  - files_to_read: paths of existing files the subtask needs
- execution_order: every subtask id, in an order that respects dependencies
- validation_instructions: how to check that the request was fulfilled

Keep subtasks small enough to be completed with a few file edits each."""
