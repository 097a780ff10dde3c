# src/pipeline/__init__.py — v1
"""DAG validation, step state machine and scheduling."""
