"""
Promotion screenshot extraction.

Identifies the merchant portal a screenshot came from, extracts promotion
fields from the recognized text, merges several screenshots into one record
and indexes it for similarity lookup.
"""

__all__ = [
    "config",
    "logging",
    "paths",
]
