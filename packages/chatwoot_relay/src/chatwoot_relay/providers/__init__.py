"""Messaging provider adapters."""
