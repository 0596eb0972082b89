"""Enumerations and API models."""
