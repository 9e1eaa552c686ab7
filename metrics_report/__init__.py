"""Merge coverage, code-metrics and diagnostics output into one report tree."""

__version__ = "0.1.0"
