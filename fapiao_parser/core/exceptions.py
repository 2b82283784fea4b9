"""Exception hierarchy for fapiao parsing."""

from pathlib import Path
from typing import Any, Optional


class FapiaoParserError(Exception):
    """Base exception for all fapiao parsing errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InputError(FapiaoParserError):
    """Raised when an input file or credential is missing, unreadable or unsupported."""

    def __init__(
        self,
        message: str,
        file_name: Optional[Path | str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        self.file_name = str(file_name) if file_name is not None else None
        self.original_error = original_error

        full_message = message
        if self.file_name:
            full_message = f"Input error for {self.file_name}: {message}"
        if original_error:
            full_message += f" (Original error: {original_error})"

        details = {}
        if self.file_name:
            details["file_name"] = self.file_name

        super().__init__(full_message, details)


class UpstreamError(FapiaoParserError):
    """Raised when the model endpoint answers with a non-2xx status or a malformed envelope."""

    def __init__(
        self,
        stage: str,
        status: Optional[int],
        body: str,
        reason: str = "upstream request failed",
    ) -> None:
        self.stage = stage
        self.status = status
        self.body = body

        message = f"Model call failed for {stage}: {reason}"
        if status is not None:
            message += f" (HTTP {status})"
        if body:
            message += f": {body[:200]}"

        super().__init__(message, {"stage": stage, "status": status})


class ModelTimeoutError(FapiaoParserError, TimeoutError):
    """Raised when a batch or aggregation call exceeds its time bound."""

    def __init__(self, stage: str, timeout_seconds: float) -> None:
        self.stage = stage
        self.timeout_seconds = timeout_seconds
        message = f"Model call for {stage} timed out after {timeout_seconds:g}s"
        super().__init__(message, {"stage": stage, "timeout_seconds": timeout_seconds})


class ConfigurationError(FapiaoParserError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, setting_name: str, issue: str) -> None:
        message = f"Configuration error for '{setting_name}': {issue}"
        super().__init__(message, {"setting_name": setting_name, "issue": issue})
        self.setting_name = setting_name
        self.issue = issue


__all__ = [
    "FapiaoParserError",
    "InputError",
    "UpstreamError",
    "ModelTimeoutError",
    "ConfigurationError",
]
