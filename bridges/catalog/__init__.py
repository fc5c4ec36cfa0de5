"""Concrete constraint and energy types."""

from . import energies, linearised, quadratic
from .linearised import SegmentLength
from .quadratic import CoherentLength, LowerBound, UpperBound, VectorLength

__all__ = [
    "energies",
    "linearised",
    "quadratic",
    "CoherentLength",
    "LowerBound",
    "SegmentLength",
    "UpperBound",
    "VectorLength",
]
