from wds.errors import WdsError


class BackendUnavailable(WdsError):
    """Raised when a requested backend cannot run in this environment."""


class ModelLoadError(WdsError):
    """Raised when model files are missing or unsupported."""


class ModelOutputError(WdsError):
    """Raised when inference output does not have the expected layout."""
