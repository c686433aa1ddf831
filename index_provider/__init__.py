"""Publish CAR archive indexes as advertisement chains to an indexing service."""

__version__ = "0.1.0"
