"""Persistence adapters for evolution records and source files."""
