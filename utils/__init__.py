"""Shared helpers: settings, logging and rate limiting."""
