"""
Service-layer helpers orchestrating adapters and exporting their results.
"""

from .aggregator import ActivityAggregator
from .export import render_csv, render_json, summaries_to_payload, write_summaries

__all__ = ["ActivityAggregator", "render_csv", "render_json", "summaries_to_payload", "write_summaries"]
