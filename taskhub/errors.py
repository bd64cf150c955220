"""Domain error taxonomy shared by every service.

CRUD functions raise these; ``taskhub.main`` renders them as ``{"detail", "code"}``
responses with the status code carried by the class.
"""

from fastapi import status


class TaskhubError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "error"

    def __init__(self, detail: str, code: str = None):
        super().__init__(detail)
        self.detail = detail
        if code:
            self.code = code


class ValidationError(TaskhubError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class AuthorizationError(TaskhubError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_authorized"


class NotFoundError(TaskhubError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ConflictError(TaskhubError):
    """A one-of-a-kind rule would be broken; the caller should refresh, not retry."""
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"

    def __init__(self, detail: str, reason: str):
        super().__init__(detail, code=reason)
        self.reason = reason


class TransientInfraError(TaskhubError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "transient_infra_error"
