"""Suggestion lifecycle and test-gated refactor execution."""
