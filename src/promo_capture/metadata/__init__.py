"""Heuristic field extraction from recognized text."""

from .fields import FieldExtractor

__all__ = ["FieldExtractor"]
