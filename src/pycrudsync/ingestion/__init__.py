"""Ingestion layer.

This package contains the push side: normalizing raw push messages into
change events and keeping the push connection alive.
"""

__all__: list[str] = []
