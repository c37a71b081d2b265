"""Typed failures raised by the approval workflow.

Every error carries the HTTP status the API layer answers with, so route
handlers never translate them one by one.
"""


class WorkflowError(Exception):
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(WorkflowError):
    status_code = 404


class UnauthorizedError(WorkflowError):
    """Caller is not an eligible approver for the current step."""

    status_code = 403


class ForbiddenError(WorkflowError):
    """Caller's role does not allow the requested view."""

    status_code = 403


class WorkflowValidationError(WorkflowError, ValueError):
    status_code = 422


class NoCurrentStepError(WorkflowError):
    """Expense is finalized or has no step awaiting action."""

    status_code = 409


class AlreadyDecidedError(WorkflowError):
    status_code = 409


class AlreadyInitializedError(WorkflowError):
    status_code = 409


class WorkflowDeadlockError(WorkflowError):
    """Current step has nobody who could ever satisfy it."""

    status_code = 409


class PersistenceError(WorkflowError):
    status_code = 500
