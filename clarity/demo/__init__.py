"""Demo data for local exploration."""
