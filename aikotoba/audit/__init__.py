"""Structured audit log."""
