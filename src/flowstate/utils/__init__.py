"""Logging setup and readability helpers."""
