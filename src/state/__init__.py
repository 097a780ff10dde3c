# src/state/__init__.py — v1
"""Persisted run state."""
