"""Workflow exceptions raised by the dashboard services.

All of them are ValueErrors carrying a message meant for the user and the
HTTP status the dashboard blueprint answers with.
"""


class WorkflowError(ValueError):
    """A user-initiated action failed. The workflow has already been reset."""

    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidTransition(WorkflowError):
    status_code = 409


class ConfirmationError(WorkflowError):
    """Typed confirmation text did not match."""


class UpsizeRejected(WorkflowError):
    """Target server type ranks below the current one."""


class RedirectRequired(Exception):
    """Not a failure: the user has to continue on another page."""

    def __init__(self, url, reason=None):
        super().__init__(url)
        self.url = url
        self.reason = reason
