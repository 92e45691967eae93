"""Settings and persistence services."""
