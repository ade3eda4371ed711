"""Command line interface for the component update protocol."""
