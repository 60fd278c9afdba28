"""Core models, configuration and shared utilities."""
