"""Error taxonomy shared by the API services and the encoding worker."""

from typing import Optional

from fastapi import status


class FeedError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(FeedError):
    """Input has the wrong shape or size."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class NotFoundError(FeedError):
    """Referenced video, comment or object does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ForbiddenError(FeedError):
    """Caller is authenticated but may not act on the target."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class ConflictError(FeedError):
    """Operation is not allowed in the current video state."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class TransientIOError(FeedError):
    """Storage, queue or database call failed and may succeed on retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Temporarily unavailable"


class MediaError(FeedError):
    """Base class for media engine failures."""

    default_message = "Media processing failed"


class ProbeError(MediaError):
    """Input file is unreadable or not a decodable media container."""

    default_message = "Could not read video metadata"


class ThumbnailError(MediaError):
    """Thumbnail frame could not be extracted."""

    default_message = "Thumbnail generation failed"


class TranscodeError(MediaError):
    """An HLS rendition pass failed."""

    default_message = "HLS transcoding failed"

    def __init__(self, message: Optional[str] = None, resolution: Optional[int] = None):
        self.resolution = resolution
        if message is None and resolution is not None:
            message = f"HLS transcoding failed at {resolution}p"
        super().__init__(message)
