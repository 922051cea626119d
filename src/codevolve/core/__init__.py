"""Shared infrastructure: models, config, errors, scheduling."""
