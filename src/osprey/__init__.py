"""Osprey - ship container logs to a remote aggregation endpoint."""

__version__ = "0.3.0"
