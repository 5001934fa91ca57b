"""Shared helpers: cache, locks, metrics, logging and errors."""
