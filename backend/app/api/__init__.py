"""HTTP route modules mounted under /api/v1."""
