"""
Errors raised by the contest services.

Every error is scoped to the single request that triggered it; the API layer
renders them as ``{"detail": message}`` with the error's status code.
"""


class ContestError(Exception):
    status_code = 400
    message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class NotFound(ContestError):
    status_code = 404
    message = "Not found"


class NoActiveTheme(NotFound):
    message = "No theme is active today"


class ValidationFailed(ContestError):
    status_code = 400
    message = "Invalid request"


class Unauthenticated(ContestError):
    status_code = 401
    message = "Not authenticated"


class Forbidden(ContestError):
    status_code = 403
    message = "Not authorized"


class Conflict(ContestError):
    status_code = 409
    message = "Conflict"


class AlreadySubmitted(Conflict):
    message = "You have already submitted a drawing for this theme"


class SubmissionClosed(Conflict):
    message = "The submission deadline has passed; submissions are closed"


class ServiceUnavailable(ContestError):
    status_code = 503
    message = "The service is temporarily unavailable, please try again"
