"""Exception hierarchy for concert-binder.

Only conditions the caller must act on are raised. Provider misses,
throttling and malformed rows are regular return values or logged
warnings, never exceptions.
"""

from __future__ import annotations

from pathlib import Path


class ConcertBinderError(Exception):
    """Base class for all concert-binder errors."""


class ConfigurationError(ConcertBinderError):
    """Invalid or incomplete configuration."""


class ProviderConfigurationError(ConfigurationError):
    """A provider was explicitly requested but lacks its credentials."""

    def __init__(self, provider: str, missing: str):
        super().__init__(f"Provider '{provider}' is not configured (missing {missing})")
        self.provider = provider
        self.missing = missing


class InputFileError(ConcertBinderError):
    """A mandatory input file is missing or unreadable."""

    def __init__(self, path: Path, reason: str = "not found"):
        super().__init__(f"Input file {path}: {reason}")
        self.path = path
        self.reason = reason


class ArtifactWriteError(ConcertBinderError):
    """Writing a persisted artifact failed; the previous content is intact."""

    def __init__(self, path: Path, cause: BaseException):
        super().__init__(f"Could not write {path}: {cause}")
        self.path = path
        self.cause = cause
