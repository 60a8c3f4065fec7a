"""Vector indexes and threshold matching."""
