"""Client units."""
