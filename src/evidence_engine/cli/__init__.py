"""Command line interface for evidence-engine."""
