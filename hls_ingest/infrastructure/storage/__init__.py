"""Output directory layout and shutdown artifact cleanup."""
