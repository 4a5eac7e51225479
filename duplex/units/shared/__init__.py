"""Shared units."""
