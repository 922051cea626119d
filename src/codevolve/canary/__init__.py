"""Canary deployment, monitoring and promotion."""
