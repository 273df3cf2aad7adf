"""Command-line interface for the packfinder event bus."""
