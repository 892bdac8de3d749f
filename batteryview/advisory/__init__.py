"""Debounced AI advisory."""
