"""Gradebook persistence."""
