"""Aikotoba — keyword-addressed notes guarded by a guessable passcode."""

__version__ = "0.1.0"
