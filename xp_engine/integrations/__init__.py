"""Adapters for the gradebook database and the analytics collector."""
