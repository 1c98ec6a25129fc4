"""Monitoring data aggregation and configuration lifecycle for the FR24 feeder monitor."""

__version__ = "0.1.0"
