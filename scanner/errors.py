"""Exception hierarchy for the repository scanner.

Callers that only need to know a scan failed can catch ``ScannerError``.
"""

from typing import Optional


class ScannerError(Exception):
    """Base class for all scanner errors."""


class ConfigError(ScannerError):
    """An environment setting is missing or malformed."""


class InvalidRepoUrlError(ScannerError):
    """The URL does not point at a GitHub repository."""


class RepoFetchError(ScannerError):
    """Repository metadata or tree could not be fetched. Aborts the scan."""

    def __init__(self, message: str, owner: str = "", name: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.owner = owner
        self.name = name
        self.status = status


class InferenceError(ScannerError):
    """A Gemini call did not yield a usable answer."""


class InferenceRetryError(InferenceError):
    """Every attempt of a Gemini call failed; the last failure is ``__cause__``."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class JsonExtractionError(InferenceError):
    """No extraction strategy could recover JSON from a Gemini response."""

    def __init__(self, message: str, length: int = 0, head: str = "", tail: str = ""):
        super().__init__(message)
        self.length = length
        self.head = head
        self.tail = tail


class StoreError(ScannerError):
    """Reading or writing scan records failed."""
