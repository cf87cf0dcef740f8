class WdsError(RuntimeError):
    """Base class for pipeline errors."""


class FetchError(WdsError):
    """Raised when a frame cannot be retrieved from the camera."""


class NoReachableEndpoint(FetchError):
    """Raised when every candidate snapshot URL failed or timed out."""


class FrameTooSmall(FetchError):
    """Raised when the accepted response body is below the minimum frame size."""


class DecodeError(WdsError):
    """Raised when image bytes are corrupt or in an unsupported format."""


class AlreadyRunning(WdsError):
    """Raised when start is requested while the service is running."""


class NotRunning(WdsError):
    """Raised when stop is requested while the service is idle."""
