# src/relay/__init__.py — v1
"""Context relay: compaction and checkpoint handoff."""
