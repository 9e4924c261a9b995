"""Command-line interface for prrelay."""
