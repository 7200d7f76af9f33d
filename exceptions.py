"""Custom exception hierarchy for the wsprobe suite."""
from __future__ import annotations

from typing import Any, Optional, Sequence


class WSProbeError(Exception):
    """Base exception for all wsprobe errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Browser-related exceptions
class BrowserError(WSProbeError):
    """Base exception for browser automation errors."""

    pass


class NavigationError(BrowserError):
    """Raised when page navigation fails."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        details = {}
        if url:
            details["url"] = url
        if timeout:
            details["timeout"] = timeout
        super().__init__(message, details)
        self.url = url
        self.timeout = timeout


class ElementNotFoundError(BrowserError):
    """Raised when none of the candidate selectors matches a visible element."""

    def __init__(self, message: str, selectors: Optional[Sequence[str]] = None):
        details = {"selectors": list(selectors)} if selectors else {}
        super().__init__(message, details)
        self.selectors = list(selectors or [])


class BrowserNotStartedError(BrowserError):
    """Raised when attempting to use browser before starting."""

    def __init__(self):
        super().__init__("Browser has not been started. Call start() first.")


class ScreenshotError(BrowserError):
    """Raised when screenshot capture fails."""

    pass


# WebSocket exceptions
class WebSocketError(WSProbeError):
    """Base exception for WebSocket monitoring errors."""

    pass


class WebSocketTimeoutError(WebSocketError):
    """Raised when a bounded wait does not observe the expected state in time.

    A connection that never matched the URL filter is reported through this
    class too, with a filter-specific message.
    """

    def __init__(
        self,
        message: str,
        timeout_ms: float,
        elapsed_ms: Optional[float] = None,
        last_state: Optional[dict[str, Any]] = None,
        url_filter: Optional[str] = None,
    ):
        details: dict[str, Any] = {"timeout_ms": timeout_ms}
        if elapsed_ms is not None:
            details["elapsed_ms"] = round(elapsed_ms, 1)
        if url_filter:
            details["url_filter"] = url_filter
        if last_state:
            details["last_state"] = last_state
        super().__init__(message, details)
        self.timeout_ms = timeout_ms
        self.elapsed_ms = elapsed_ms
        self.last_state = last_state or {}
        self.url_filter = url_filter


# Probe definition exceptions
class ProbeDefinitionError(WSProbeError):
    """Base exception for probe definition/loading errors."""

    pass


class ProbeLoadError(ProbeDefinitionError):
    """Raised when a probe file cannot be loaded or parsed."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        details = {"file_path": file_path} if file_path else {}
        super().__init__(message, details)
        self.file_path = file_path


class ProbeValidationError(ProbeDefinitionError):
    """Raised when a probe definition is invalid."""

    def __init__(self, message: str, probe_id: Optional[str] = None, field: Optional[str] = None):
        details = {}
        if probe_id:
            details["probe_id"] = probe_id
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.probe_id = probe_id
        self.field = field


# Probe execution exceptions
class ProbeExecutionError(WSProbeError):
    """Raised when a probe step cannot be carried out."""

    def __init__(self, message: str, probe_id: Optional[str] = None, step: Optional[str] = None):
        details = {}
        if probe_id:
            details["probe_id"] = probe_id
        if step:
            details["step"] = step
        super().__init__(message, details)
        self.probe_id = probe_id
        self.step = step


# Configuration exceptions
class ConfigurationError(WSProbeError):
    """Raised when configuration is invalid."""

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Raised when a required config file is not found."""

    def __init__(self, file_path: str):
        super().__init__(f"Configuration file not found: {file_path}", {"file_path": file_path})
        self.file_path = file_path
