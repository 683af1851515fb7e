"""Command line interface for Smart Retry."""
