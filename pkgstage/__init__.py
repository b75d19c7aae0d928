"""Staged package updates for Composer-managed sites."""

__version__ = "0.1.0"
