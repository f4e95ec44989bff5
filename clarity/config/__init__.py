"""YAML settings loading."""
