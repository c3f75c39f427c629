"""Error taxonomy shared by parsing, extraction and storage."""

from __future__ import annotations


class LifeboatError(Exception):
    """Base class for every error lifeboat reports to its caller."""


class UnsupportedFormat(LifeboatError):
    """No export format recognised the input."""


class NoMessagesFound(LifeboatError):
    """A format matched the input but produced no usable messages."""


class MalformedModelOutput(LifeboatError):
    """A model reply could not be recovered into anything usable."""


class CallFailure(LifeboatError):
    """The LLM provider call failed (network, auth, quota, ...)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class InvalidImport(LifeboatError):
    """An imported document does not look like a companion profile."""


class ImportNeedsReview(LifeboatError):
    """An imported profile has injection findings that were not acknowledged."""

    def __init__(self, findings):
        self.findings = list(findings)
        super().__init__(
            f"Imported profile has {len(self.findings)} suspicious field(s); "
            "review and acknowledge them before saving."
        )


class Cancelled(LifeboatError):
    """The extraction run was cancelled by the user."""


class PipelineBusy(LifeboatError):
    """An extraction run is already in progress for this session."""
