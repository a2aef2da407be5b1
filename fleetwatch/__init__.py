"""Fleetwatch - real-time entity monitoring, alerting and notification."""

__version__ = "0.1.0"
