"""Shared helpers: input validators and CLI output formatting."""
