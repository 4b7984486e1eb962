"""Shared exceptions and utilities."""
