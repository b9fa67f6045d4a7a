"""Data model, catalog, normalization and platform classification."""
