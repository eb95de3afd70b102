"""
Error types shared by the extraction pipeline, storage and HTTP layer.
The HTTP status for each error lives next to it so server.py can map them in one handler.
"""


class TaskFlowError(Exception):
    """Base class for all application errors."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(TaskFlowError):
    """Caller supplied empty or out-of-domain input. Raised before any external call."""
    status_code = 400


class AuthenticationError(TaskFlowError):
    status_code = 401


class NotFoundError(TaskFlowError):
    """Record does not exist or belongs to another user (the two cases are not distinguished)."""
    status_code = 404


class ExtractionServiceError(TaskFlowError):
    """The AI service call failed or returned content that is not a JSON object."""
    status_code = 500


class PersistenceError(TaskFlowError):
    """A database read or write failed."""
    status_code = 500


class EmailDeliveryError(TaskFlowError):
    status_code = 500
