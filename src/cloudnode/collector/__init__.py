"""Operator input collection and validation."""
