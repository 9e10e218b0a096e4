"""
Feed API Layer.

This package handles all communication with the remote package feed.
"""

from .client import FeedClient, parse_index

__all__ = ["FeedClient", "parse_index"]
