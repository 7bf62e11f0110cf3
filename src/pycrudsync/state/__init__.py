"""State/store layer.

This package holds the per-resource item and list caches plus the list
query key normalization shared by caching and in-flight dedup.
"""
