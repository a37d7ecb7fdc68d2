"""Conversation store, model provider relay and model catalog."""
