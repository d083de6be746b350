"""Conversation platform clients."""
