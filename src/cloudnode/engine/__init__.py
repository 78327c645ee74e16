"""Provisioning workflow engine."""
