# src/contract/__init__.py — v1
"""Handover contract validation."""
