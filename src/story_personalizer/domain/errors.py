"""Error taxonomy for the personalization pipeline."""


class StoryPersonalizerError(Exception):
    """Base error carrying an HTTP-style status code and a readable message."""

    status_code: int = 500
    default_message: str = "Unexpected error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AnalysisError(StoryPersonalizerError):
    """Character analysis failed; callers continue without a description."""

    status_code = 502
    default_message = "Failed to analyze character"


class SheetGenerationError(StoryPersonalizerError):
    """Character sheet generation failed; callers continue without a sheet."""

    status_code = 502
    default_message = "Failed to generate character sheet"


class GenerationError(StoryPersonalizerError):
    """Image generation exhausted every strategy."""

    status_code = 502
    default_message = "Failed to generate page"


class PostProcessError(StoryPersonalizerError):
    """An optional post-processing step failed."""

    status_code = 502
    default_message = "Post-processing failed"


class RegenerationLimitExceeded(StoryPersonalizerError):
    """The page already holds the maximum number of regenerations."""

    status_code = 400
    default_message = "Maximum regenerations reached"


class VersionNotFound(StoryPersonalizerError):
    """The requested page version does not exist."""

    status_code = 404
    default_message = "Version not found"


class SessionNotFoundOrExpired(StoryPersonalizerError):
    """The session does not exist or has expired."""

    status_code = 404
    default_message = "Session not found or expired"


class StoryNotFound(StoryPersonalizerError):
    """The story template is unknown to the content backend."""

    status_code = 404
    default_message = "Story not found"


class InvalidRequest(StoryPersonalizerError):
    """The request cannot be served in the session's current state."""

    status_code = 400
    default_message = "Invalid request"
