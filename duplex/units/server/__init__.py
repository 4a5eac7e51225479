"""Server units."""
