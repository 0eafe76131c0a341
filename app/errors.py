"""
Error taxonomy shared by the API, the worker and the pipeline.
Each class carries the HTTP status the API reports it with.
"""


class AppError(Exception):
    """Base class for expected application failures."""

    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigError(AppError):
    """Required secret or API key is not configured."""
    status_code = 500


class VerificationError(AppError):
    """Webhook authentication failed."""
    status_code = 401


class NotFoundError(AppError):
    """Referenced call, event or job does not exist."""
    status_code = 404


class UpstreamError(AppError):
    """A collaborator service returned an error or was unreachable."""
    status_code = 502


class OutputValidationError(AppError):
    """Completion output failed schema or evidence validation."""
    status_code = 502

    def __init__(self, stage: str, errors: list[str]):
        self.stage = stage
        self.errors = errors
        super().__init__(f"{stage} output failed validation: {'; '.join(errors[:5])}")


class BadRequestError(AppError):
    """Malformed or incomplete request input."""
    status_code = 400


class ConflictError(AppError):
    """The resource is not in a state that allows the operation."""
    status_code = 409
