"""Automated content-generation job scheduler."""

__version__ = "1.0.0"
