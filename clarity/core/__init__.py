"""
Core modules for Clarity.

Domain logic for cost computation, span enrichment, status resolution,
time windows, aggregation and insights, plus the background dispatcher
that runs ingestion side effects.
"""
