"""Command-line interface for tablepipe."""
