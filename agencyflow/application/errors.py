"""Workflow error taxonomy shared by use cases and API routes"""


class WorkflowError(Exception):
    """Base class for errors reported synchronously to the caller."""
    status_code = 500


class ValidationError(WorkflowError, ValueError):
    status_code = 400


class NotFoundError(WorkflowError):
    status_code = 404


class AccessDeniedError(WorkflowError):
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class DeliveryError(WorkflowError):
    """A synchronous send (manual report trigger) could not be completed."""
    status_code = 502
