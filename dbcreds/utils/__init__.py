"""Utility helpers shared across dbcreds."""
