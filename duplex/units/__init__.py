"""Bundled example units, discovered by directory."""
