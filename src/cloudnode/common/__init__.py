"""Shared configuration, models and error types."""
