class ForumError(Exception):
    """Base class for errors the forum maps onto HTTP responses."""


class UpstreamError(ForumError):
    """The external identity provider was unreachable or rejected the call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ValidationError(ForumError):
    pass


class NotFoundError(ForumError):
    pass


class PermissionDeniedError(ForumError):
    pass
