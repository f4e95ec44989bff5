"""
Clarity - LLM trace ingestion and analytics.

Ingests traces emitted by LLM-calling applications, enriches them with
cost and status, and serves time-windowed analytics and insights.
"""

__version__ = "0.1.0"
