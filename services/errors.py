"""Exceptions raised by the analytics services."""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base class for analytics failures that callers may want to surface."""


class NoSensorsError(AnalyticsError):
    def __init__(self, message: str = "No sensors available for the current filter.") -> None:
        super().__init__(message)


class ExportNotFoundError(KeyError):
    def __init__(self, export_id: str) -> None:
        super().__init__(f"Export {export_id!r} not found.")
        self.export_id = export_id

    def __str__(self) -> str:
        return str(self.args[0])


class ExportNotReadyError(AnalyticsError):
    def __init__(self, export_id: str, status: str) -> None:
        super().__init__(f"Export {export_id!r} is not ready (status: {status}).")
        self.export_id = export_id
        self.status = status
