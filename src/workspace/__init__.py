# src/workspace/__init__.py — v1
"""Per-invocation workspace isolation."""
