"""
Domain exceptions for the portal.

Service layer raises these. The HTTP layer maps each one to a response
through ``status_code`` and ``code``; nothing below the routes returns
HTTP errors directly.
"""


class PortalError(Exception):
    """Base exception carrying a human-readable message and a machine-readable code."""

    status_code = 500

    def __init__(self, message: str, code: str = None):
        self.message = message
        self.code = code or "portal_error"
        super().__init__(message)


class Unauthenticated(PortalError):
    """No active principal, or the supplied credentials/token are not valid."""

    status_code = 401

    def __init__(self, message: str = "Authentication required."):
        super().__init__(message, code="unauthenticated")


class NotFound(PortalError):
    """The row or record does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found."):
        super().__init__(message, code="not_found")


class AccessDenied(PortalError):
    """
    The permission gate failed.
    Distinct from NotFound: the target exists but the caller may not touch it.
    """

    status_code = 403

    def __init__(self, message: str = "You do not have permission to perform this action."):
        super().__init__(message, code="access_denied")


class Conflict(PortalError):
    """A conditional write matched no rows, or a unique key is already taken."""

    status_code = 409

    def __init__(self, message: str = "The resource is not in the expected state."):
        super().__init__(message, code="conflict")


class UpstreamFailure(PortalError):
    """The identity, relational or blob store call itself failed."""

    status_code = 502

    def __init__(self, message: str = "An upstream service call failed."):
        super().__init__(message, code="upstream_failure")


class InvalidRequest(PortalError):
    status_code = 400

    def __init__(self, message: str = "Invalid request."):
        super().__init__(message, code="invalid_request")
