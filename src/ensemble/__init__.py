"""Ensemble: offline-first library cache and multi-provider sync core."""

__version__ = "0.1.0"
