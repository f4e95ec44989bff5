"""Persistence: data models, SQLite connections and the trace repository."""
