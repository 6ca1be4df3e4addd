"""Settings, logging, and time helpers."""
