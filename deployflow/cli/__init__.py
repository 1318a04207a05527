"""Command line interface for deployflow."""
