"""Bundled store implementations for the admin authorization gate."""
