"""
Search Error Taxonomy
=====================

Every way a search can end other than "complete" is one of the exceptions
below. Each carries:

- ``kind``: a stable machine-readable identifier (used by the HTTP API)
- ``user_message``: one actionable sentence for the visitor or organizer

"No face in the selfie" and "no matching photos" are different outcomes:
the first raises NoFaceDetectedError, the second is an empty result list.

USAGE:
------
    from facefind.errors import FaceFindError

    try:
        matches = await orchestrator.search(selfie, candidates)
    except FaceFindError as e:
        show(e.user_message)
"""

from typing import Optional


class FaceFindError(Exception):
    """Base class for all errors surfaced by a search."""

    kind = "unknown"
    user_message = "Something went wrong while searching your photos. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)


class NoFaceDetectedError(FaceFindError):
    kind = "no_face_detected"
    user_message = (
        "We could not find a face in your selfie. "
        "Use a well-lit, front-facing photo with only your face in it."
    )


class ModelLoadError(FaceFindError):
    kind = "model_load_failure"
    user_message = "The face recognition models could not be loaded. Check the connection and reload the page."


class SecurityPolicyViolationError(FaceFindError):
    """A secure page is configured to talk to an insecure (http:) endpoint."""

    kind = "security_policy_violation"

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self.user_message = (
            f"Security block: this site is served over HTTPS but the matching API "
            f"uses HTTP ({endpoint}). Install an SSL certificate on the API and use "
            f"an https:// address, or put it behind an HTTPS tunnel."
        )
        super().__init__(self.user_message)


class RemoteTimeoutError(FaceFindError):
    kind = "timeout"
    user_message = "The matching API took too long to respond. Check that the server is running."

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Remote matching API did not respond within {timeout:g}s")


class ConnectionFailureError(FaceFindError):
    kind = "connection_failure"
    user_message = (
        "Could not reach the matching API. Check that it is running, that the "
        "address is correct and that it accepts cross-origin requests."
    )


class ValidationRejectedError(FaceFindError):
    """The remote side rejected the payload (HTTP 422)."""

    kind = "validation_rejected"
    user_message = "The matching API rejected the request data (422). See the server logs for details."

    def __init__(self, body: str):
        self.status_code = 422
        self.body = body
        super().__init__(f"Remote matching API rejected the payload (422): {body}")


class RemoteHttpError(FaceFindError):
    kind = "remote_http_error"

    def __init__(self, status_code: int, reason: str = "", body: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        self.user_message = f"The matching API returned an error ({status_code}): {reason}".rstrip(": ")
        super().__init__(self.user_message)


class UnknownSearchError(FaceFindError):
    kind = "unknown"


class SearchCancelledError(FaceFindError):
    kind = "cancelled"
    user_message = "The search was cancelled."
