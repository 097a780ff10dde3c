# src/artifacts/__init__.py — v1
"""Run-scoped artifact registry."""
