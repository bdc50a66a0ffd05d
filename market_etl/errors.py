from typing import Optional


class EtlError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(EtlError):
    """Raised when the pipeline configuration is missing or malformed."""


class UpstreamError(EtlError):
    """An upstream provider returned an error payload or an unusable response."""

    def __init__(self, message: str, identifier: Optional[str] = None):
        super().__init__(message)
        self.identifier = identifier
