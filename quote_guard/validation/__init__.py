"""Validation of generated quote data."""
