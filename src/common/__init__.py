"""Shared helpers: logging, HTTP, errors and cancellation."""
