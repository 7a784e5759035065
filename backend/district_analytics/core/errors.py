from __future__ import annotations

from typing import Any


class AnalyticsError(Exception):
    """Base error carrying the operation/snapshot/unit context for logs."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        snapshot_id: str | None = None,
        unit_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.snapshot_id = snapshot_id
        self.unit_id = unit_id

    def context(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "snapshot_id": self.snapshot_id,
            "unit_id": self.unit_id,
            "error": self.message,
        }


class ValidationError(AnalyticsError, ValueError):
    pass


class CorruptionDetected(AnalyticsError):
    pass


class StorageError(AnalyticsError):
    pass
