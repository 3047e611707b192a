"""
Classification of FFmpeg diagnostic output into readable failure reasons.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class EncoderDiagnostic:
    """A known FFmpeg failure signature."""
    pattern: str
    category: str  # 'hardware', 'input', 'resource'
    description: str


# Checked in order; more specific patterns first
ENCODER_DIAGNOSTICS: List[EncoderDiagnostic] = [
    # === Hardware encoders ===
    EncoderDiagnostic("no nvenc capable devices", "hardware", "No NVENC capable GPU"),
    EncoderDiagnostic("openencodesessionex failed", "hardware", "NVENC session init failed"),
    EncoderDiagnostic("cuda error", "hardware", "CUDA error"),
    EncoderDiagnostic("mfx_err", "hardware", "Intel QSV error"),
    EncoderDiagnostic("qsv init failed", "hardware", "Intel QSV initialization failed"),
    EncoderDiagnostic("vaapi", "hardware", "VAAPI error"),
    EncoderDiagnostic("/dev/dri", "hardware", "DRI device error"),
    EncoderDiagnostic("videotoolbox", "hardware", "VideoToolbox error"),
    EncoderDiagnostic("hwupload", "hardware", "Hardware upload failed"),
    EncoderDiagnostic("incompatible pixel format", "hardware", "Incompatible pixel format for encoder"),

    # === Source problems ===
    EncoderDiagnostic("moov atom not found", "input", "Invalid MP4 file"),
    EncoderDiagnostic("invalid data found", "input", "Invalid input data"),
    EncoderDiagnostic("no such file", "input", "File not found"),
    EncoderDiagnostic("does not contain any stream", "input", "No playable streams"),
    EncoderDiagnostic("decoder not found", "input", "Decoder not found"),
    EncoderDiagnostic("permission denied", "input", "Permission denied"),

    # === Host resources ===
    EncoderDiagnostic("no space left", "resource", "No disk space"),
    EncoderDiagnostic("disk quota", "resource", "Disk quota exceeded"),
    EncoderDiagnostic("out of memory", "resource", "Out of memory"),
    EncoderDiagnostic("cannot allocate", "resource", "Memory allocation failed"),
    EncoderDiagnostic("too many open files", "resource", "File descriptor limit"),

    # === Configuration ===
    EncoderDiagnostic("unknown encoder", "config", "Encoder not available in this FFmpeg build"),
    EncoderDiagnostic("encoder not found", "config", "Encoder not available in this FFmpeg build"),
    EncoderDiagnostic("invalid argument", "config", "Invalid argument"),
]


class ErrorClassifier:
    """Turns the tail of FFmpeg's diagnostic stream into a short reason."""

    def __init__(self, diagnostics: Optional[List[EncoderDiagnostic]] = None):
        self.diagnostics = diagnostics or ENCODER_DIAGNOSTICS

    def classify(self, error_msg: str) -> Tuple[Optional[EncoderDiagnostic], str]:
        """
        Match an error message against the known signatures.

        Returns:
            Tuple of (matched_diagnostic, category). Category is 'unknown' if no match.
        """
        error_lower = error_msg.lower()

        for diagnostic in self.diagnostics:
            if diagnostic.pattern in error_lower:
                return diagnostic, diagnostic.category

        return None, "unknown"

    def is_hardware_error(self, error_msg: str) -> bool:
        _, category = self.classify(error_msg)
        return category == "hardware"

    def describe(self, lines: Iterable[str]) -> str:
        """Readable reason for a failed encode, built from its last output lines."""
        meaningful = [line.strip() for line in lines if line.strip()]
        if not meaningful:
            return "Unknown error"

        diagnostic, _ = self.classify("\n".join(meaningful))
        last_line = meaningful[-1][:200]
        if diagnostic:
            return f"{diagnostic.description} ({last_line})"
        return last_line


# Global classifier instance
_classifier: Optional[ErrorClassifier] = None


def get_error_classifier() -> ErrorClassifier:
    """Get or create the global error classifier."""
    global _classifier
    if _classifier is None:
        _classifier = ErrorClassifier()
    return _classifier
