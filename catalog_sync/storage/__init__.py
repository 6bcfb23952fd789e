"""Persistence layer: catalog rows and sync run records."""
