"""
Domain events package.
"""

from .recognition import RecognitionEvent

__all__ = [
    "RecognitionEvent",
]
