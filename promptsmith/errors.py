from typing import Optional


class PromptBuildError(Exception):
    """
    Base class for every error raised while building a prompt.
    `stage` names the pipeline stage the error escaped from, if any.
    """

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class ConfigurationError(PromptBuildError):
    """Unknown dialect, malformed lore entry timing values, bad pipeline layout."""


class ValidationError(PromptBuildError):
    """Required build inputs are missing or unusable."""


class StrictModeError(PromptBuildError):
    """A warning was emitted while the build context runs in strict mode."""


class StageError(PromptBuildError):
    """Wraps an unexpected exception escaping a pipeline stage."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{type(cause).__name__}: {cause}", stage=stage)
        self.cause = cause
