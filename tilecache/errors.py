"""Failure taxonomy for fetching and transforming tile data."""

from typing import Optional


class FetchError(Exception):
    """Base class for failures raised while producing tile data."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class NetworkFailure(FetchError):
    """The upstream could not be reached."""


class TimeoutFailure(FetchError):
    """An attempt did not complete within its timeout."""

    def __init__(self, message: str = "Request timeout", cause: Optional[BaseException] = None):
        super().__init__(message, cause)


class UpstreamError(FetchError):
    """The upstream answered but signalled failure."""

    def __init__(self, message: str, status: Optional[int] = None, cause: Optional[BaseException] = None):
        self.status = status
        super().__init__(message, cause)


class ValidationFailure(FetchError):
    """A raw payload did not pass its strategy's validation."""

    def __init__(self, type_id: str, reason: str):
        self.type_id = type_id
        self.reason = reason
        super().__init__(f"[{type_id}] Invalid raw data: {reason}")


class TransformFailure(FetchError):
    """A strategy's map/parse step raised."""

    def __init__(self, type_id: str, message: str, cause: Optional[BaseException] = None):
        self.type_id = type_id
        super().__init__(f"[{type_id}] {message}", cause)


class RegistryLookupError(LookupError):
    """No strategy is registered for a type identifier."""

    def __init__(self, kind: str, type_id: str):
        self.kind = kind
        self.type_id = type_id
        super().__init__(f"No {kind} registered for type: {type_id}")
