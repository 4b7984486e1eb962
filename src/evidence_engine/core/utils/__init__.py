"""File and logging helpers."""
