# src/core/__init__.py — v1
"""Shared errors and pipeline definition models."""
