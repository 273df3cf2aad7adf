"""Domain core: database primitives, events, errors and settings."""
