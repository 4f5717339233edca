from typing import Optional


class ClientError(Exception):
    """Base class for errors raised by the client core."""


class ValidationFailed(ClientError):
    """Input rejected locally, before any request was made."""


class TransitionRejected(ClientError):
    """The action is not valid in the record's current lifecycle state."""


class NotSignedIn(ClientError):
    """The action needs a signed-in user."""


class BackendError(ClientError):
    """A request to the backend failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
