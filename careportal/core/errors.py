"""
Domain error taxonomy.

Services raise these; ``careportal.main`` maps them to HTTP responses in one
place, so route handlers never build status codes for domain outcomes.
"""

from __future__ import annotations


class AppError(Exception):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class Unauthorized(AppError):
    status_code = 401
    default_detail = "Unauthorized"


class Forbidden(AppError):
    status_code = 403
    default_detail = "Forbidden"


class GatingRequired(Forbidden):
    default_detail = "Troubleshooting procedures must be acknowledged before filing a ticket"


class NotFound(AppError):
    status_code = 404
    default_detail = "Not found"


class InvalidState(AppError):
    status_code = 400
    default_detail = "Operation not allowed in the current state"


class AlreadyAcknowledged(InvalidState):
    default_detail = "Ticket already acknowledged"


class AlreadyRated(InvalidState):
    default_detail = "Satisfaction already rated for this ticket"


class ValidationError(AppError):
    status_code = 400
    default_detail = "Invalid input"


class DependencyFailure(AppError):
    status_code = 502
    default_detail = "External dependency failed"


class SummaryGenerationError(DependencyFailure):
    default_detail = "Failed to generate summary"
