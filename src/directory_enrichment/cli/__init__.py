"""Command-line interface for directory enrichment."""
