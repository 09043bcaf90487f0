"""
Core tracking components.

This module contains the object tracker and the speed fusion calculator.
Models live in the models/ package.
"""

from .speed import SpeedCalculator
from .tracker import ObjectTracker

__all__ = [
    "ObjectTracker",
    "SpeedCalculator",
]
