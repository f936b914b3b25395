"""Parley: context-aware reply suggestions for messaging platforms."""

__version__ = "0.1.0"
