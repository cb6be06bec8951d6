from typing import Optional


class ProxyError(Exception):
    """Base class for failures raised while proxying a request."""

    status_code = 502


class RoutingError(ProxyError):
    """The director could not produce a usable backend target."""


class DispatchError(ProxyError):
    """The transport failed to obtain a response from the backend."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class StreamError(ProxyError):
    """Relaying failed after the response status was already sent."""
