"""Streaming chat relay with durable, reconcilable conversations."""

__version__ = "0.1.0"
