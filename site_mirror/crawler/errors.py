"""
Exceptions raised by the mirror engine.
"""


class MirrorError(Exception):
    """Base class for all site mirror errors."""


class InvalidUrlError(MirrorError, ValueError):
    """The start URL is malformed or not http(s)."""


class RenderError(MirrorError):
    """A page could not be fetched or rendered."""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url


class LoginError(RenderError):
    """
    The login flow of the browser renderer failed.

    `reason` is 'invalid_credentials' when the site rejected the
    credentials, 'login_failed' for anything else (timeouts, missing form
    fields, navigation errors).
    """

    INVALID_CREDENTIALS = "invalid_credentials"
    LOGIN_FAILED = "login_failed"

    def __init__(self, reason: str, detail: str = "", url: str = ""):
        message = f"{reason}: {detail}" if detail else reason
        super().__init__(message, url)
        self.reason = reason


class ResourceFetchError(MirrorError):
    """A single resource download attempt failed."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
