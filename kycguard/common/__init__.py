"""Shared exceptions and metrics."""
