"""Iterative developer/reviewer agent loop over a planned task list."""

__version__ = "0.4.0"
