"""Event bus and stream consumers."""
