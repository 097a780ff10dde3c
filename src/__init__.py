# src/__init__.py — v1
"""waveflow: multi-step AI agent pipeline orchestrator."""

__version__ = "0.1.0"
