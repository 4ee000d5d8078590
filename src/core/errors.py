"""
Error taxonomy for the guestbook.
Services raise these; routes and the submission controller translate them
into user-facing responses.
"""

from typing import Optional

GENERIC_FAILURE = "We couldn't send your message right now. Please try again."


class GuestbookError(Exception):
    """Base class for every guestbook error."""


class SubmissionError(GuestbookError):
    """
    Terminal submission failure.
    `user_message` is safe to display; the exception chain holds the details.
    """

    def __init__(self, user_message: str = GENERIC_FAILURE):
        super().__init__(user_message)
        self.user_message = user_message


class ValidationError(SubmissionError):
    """A required field is missing or malformed. Raised before any I/O."""


class RemoteServiceError(GuestbookError):
    """A backend call failed (rejected or unreachable)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UploadError(RemoteServiceError):
    """Blob storage rejected the photo or could not be reached."""


class InsertError(RemoteServiceError):
    """A row insert or update was rejected."""


class FetchError(RemoteServiceError):
    """Reading the message list failed."""


class MessageNotFound(GuestbookError):
    """No stored message matches the requested id."""
