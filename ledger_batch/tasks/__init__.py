"""Batch task protocol and the settlement task."""
