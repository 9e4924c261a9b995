"""Subcommands of the prrelay CLI."""
