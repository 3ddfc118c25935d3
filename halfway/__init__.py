"""Halfway: find a fair meeting point between origins and the places around it."""

__version__ = "0.1.0"
