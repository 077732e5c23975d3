"""
View layer: filter state, paging, polling and URL mirroring for the dashboard
"""

from .controller import DashboardController
from .poller import PollingScheduler

__all__ = ["DashboardController", "PollingScheduler"]
