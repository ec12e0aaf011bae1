"""Interface for presenting guard diagnostics to the user.

Defines the contract for displaying information, errors, warnings, status
snapshots and health reports, allowing different UI implementations.
"""

import abc
from typing import Any

from callguard.domain.models.common import MonitorStatus


class UserInterface(abc.ABC):
    """Abstract Base Class for user-facing output."""

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user."""
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass

    @abc.abstractmethod
    def display_status(self, status: MonitorStatus) -> None:
        """Displays a composite monitor status snapshot.

        Args:
            status: Snapshot returned by ``CallMonitor.status()``.
        """
        pass

    @abc.abstractmethod
    def display_health_report(self, report: Any) -> None:
        """Displays a health report (``HealthReport``)."""
        pass
