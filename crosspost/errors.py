from __future__ import annotations


class CrosspostError(Exception):
    """Base class for failures surfaced to the dashboard user."""


class OAuthError(CrosspostError):
    pass


class GraphAPIError(CrosspostError):
    def __init__(self, message: str, code: int | str | None = None) -> None:
        super().__init__(message)
        self.code = code


class YouTubeAPIError(CrosspostError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class MediaProcessingError(GraphAPIError):
    pass


class PublishError(CrosspostError):
    pass


class SplitError(CrosspostError):
    pass
