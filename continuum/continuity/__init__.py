"""Report revision state machine."""

from .store import ReportContinuityStore, NO_REPORT

__all__ = ["ReportContinuityStore", "NO_REPORT"]
