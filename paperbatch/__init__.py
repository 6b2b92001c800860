"""Batch outline/summary generation tracker for research-paper rows."""

__version__ = "0.1.0"
