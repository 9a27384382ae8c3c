"""Recurring raffle keeper driven by a verifiable randomness oracle."""

__version__ = "1.0.0"
