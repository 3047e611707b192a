"""
Exception hierarchy for Spillway.

Anything derived from ConversionError is fatal to a job: the orchestrator
records its message on the video record and removes partial output.
"""

from typing import Optional


class SpillwayError(Exception):
    """Base class for all Spillway errors."""


class ConversionError(SpillwayError):
    """A conversion job cannot complete."""


class UnsupportedFormatError(ConversionError):
    """Source file extension is not in the allowlist."""

    def __init__(self, filename: str):
        super().__init__(f"Unsupported video file format: {filename}")
        self.filename = filename


class ResolutionProbeError(SpillwayError):
    """A probe strategy could not determine the source dimensions."""


class ProcessTimeoutError(SpillwayError):
    """An external process exceeded its time budget and was killed."""

    def __init__(self, command: str, timeout: float):
        super().__init__(f"{command} timed out after {timeout:.0f}s")
        self.command = command
        self.timeout = timeout


class EncodingProcessError(ConversionError):
    """The encoder exited with a failure status."""

    def __init__(self, rendition: str, exit_code: int, detail: Optional[str] = None):
        message = f"Encoding {rendition} failed with exit code {exit_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.rendition = rendition
        self.exit_code = exit_code
        self.detail = detail


class EncryptionError(ConversionError):
    """Bad key, tampered ciphertext or failed segment encryption."""


class ConversionCancelledError(ConversionError):
    """The job was cancelled through the process registry."""

    def __init__(self, message: str = "Conversion cancelled by user"):
        super().__init__(message)


class InvalidStatusTransition(SpillwayError):
    """Attempted to move a job out of a terminal state."""
