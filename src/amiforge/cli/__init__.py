"""Command line interface for amiforge."""
