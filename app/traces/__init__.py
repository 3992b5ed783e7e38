"""Trace normalization for the supported trace backends."""
