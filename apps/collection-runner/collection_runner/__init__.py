"""Declarative API test collection runner."""

__version__ = "0.1.0"
