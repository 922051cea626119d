"""Code analysis passes and suggestion generation."""
