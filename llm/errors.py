"""Exceptions raised by the LLM layer."""


class LLMError(Exception):
    """Base class for LLM layer failures."""


class ConfigurationError(LLMError):
    """A provider is missing, disabled, unsupported or lacks credentials."""


class AvailabilityError(LLMError):
    """A configured provider cannot be reached."""


class NoLLMAvailableError(LLMError):
    """No candidate provider reported itself available."""

    def __init__(self, tried: list[str]) -> None:
        self.tried = tried
        detail = ", ".join(tried) if tried else "none configured"
        super().__init__(f"No LLM is available (tried: {detail})")


class StructuredOutputError(LLMError):
    """The model's answer could not be parsed into the requested schema."""

    def __init__(self, message: str, raw_output: str = "") -> None:
        self.raw_output = raw_output
        super().__init__(message)


class ToolStepLimitError(LLMError):
    """The tool loop hit its step cap with tool calls still pending.

    ``partial_output`` is the last text the model produced.
    """

    def __init__(self, steps: int, partial_output: str = "") -> None:
        self.steps = steps
        self.partial_output = partial_output
        super().__init__(f"Stopped after {steps} tool steps with tool calls still pending")
