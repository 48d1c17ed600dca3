"""Command-line interface for dehost."""
