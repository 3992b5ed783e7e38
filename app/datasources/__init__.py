"""Trace datasources: configuration, validation, secrets and connectivity."""
