"""Are You Safe check-in service backend."""
