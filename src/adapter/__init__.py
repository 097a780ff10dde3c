# src/adapter/__init__.py — v1
"""Adapter interface and the subprocess adapter."""
