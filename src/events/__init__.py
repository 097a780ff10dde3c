# src/events/__init__.py — v1
"""Structured progress events."""
