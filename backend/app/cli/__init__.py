"""Operator command-line entrypoints."""
