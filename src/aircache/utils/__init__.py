"""Shared helpers: logging and naming."""
