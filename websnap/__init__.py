"""Deadline-bounded full-page screenshot capture for untrusted web pages."""

__version__ = "1.0.0"
