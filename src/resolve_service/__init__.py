"""Resolve Service - transactions, escrow and dispute resolution between agents."""

__version__ = "0.1.0"
