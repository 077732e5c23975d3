"""
StreamPulse
Live livestream statistics: upstream proxy, KPI aggregation and a polling dashboard
"""

__version__ = "0.1.0"
