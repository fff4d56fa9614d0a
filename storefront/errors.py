"""
Error taxonomy for the storefront API.

Each error carries the HTTP status it maps to; server.py renders them as
``{"error": message}``.
"""


class StorefrontError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthenticated(StorefrontError):
    """No valid session for the request."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFound(StorefrontError):
    """A user, product or order does not exist."""

    status_code = 404


class ValidationFailure(StorefrontError):
    """The request is well-formed but cannot be processed as given."""

    status_code = 400


class UpstreamFailure(StorefrontError):
    """The commerce platform or payment backend failed."""

    status_code = 500


class CommerceNotConfigured(UpstreamFailure):
    """External commerce credentials are missing."""

    def __init__(self, message: str = "Shopify not configured"):
        super().__init__(message)
