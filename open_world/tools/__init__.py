"""Standalone diagnostics built on the exploration services."""
