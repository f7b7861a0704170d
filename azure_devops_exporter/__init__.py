"""Prometheus exporter for Azure DevOps."""

__version__ = "0.1.0"
