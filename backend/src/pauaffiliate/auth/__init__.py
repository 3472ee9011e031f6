"""Authentication and profile lookups."""
