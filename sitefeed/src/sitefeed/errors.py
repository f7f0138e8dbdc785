"""
Exception taxonomy for feed acquisition.

Component errors are fatal for one render, one script run or one source.
The aggregator converts them into per-source failure annotations; explicit
single-source calls let them propagate.
"""

from typing import Optional


class SiteFeedError(Exception):
    """Base class for all sitefeed errors."""

    def __init__(self, message: str, source_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source_id = source_id

    def __str__(self) -> str:
        if self.source_id:
            return f"[{self.source_id}] {self.message}"
        return self.message


class SourceConfigError(SiteFeedError):
    """A source configuration cannot be used as given."""


class AuthConfigInvalidError(SiteFeedError):
    """Credential data is malformed (raised only by strict validation)."""

    def __init__(self, problems: list[str], source_id: Optional[str] = None):
        super().__init__("; ".join(problems), source_id=source_id)
        self.problems = problems


class RenderError(SiteFeedError):
    """A headless render failed. The shared browser survives."""


class RenderTimeoutError(RenderError):
    """Navigation did not settle within the render timeout."""


class RenderNavigationError(RenderError):
    """Navigation failed (network error or HTTP error status)."""


class ScriptError(SiteFeedError):
    """A source script failed."""


class ScriptTimeoutError(ScriptError):
    """A script exceeded its wall-clock budget and was terminated."""


class ScriptRuntimeError(ScriptError):
    """A script raised, crashed, or returned an unusable value."""

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        script_traceback: Optional[str] = None,
    ):
        super().__init__(message, source_id=source_id)
        self.script_traceback = script_traceback


class SourceFetchError(SiteFeedError):
    """Network, HTTP status or parse failure while fetching a source."""

    def __init__(
        self,
        message: str,
        source_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, source_id=source_id)
        self.status_code = status_code


class AggregateEmptyError(SiteFeedError):
    """No source produced items and at least one source failed."""

    def __init__(self, failures: list, message: Optional[str] = None):
        super().__init__(message or f"feed unavailable: {len(failures)} source(s) failed")
        self.failures = failures
