"""
Domain subpackage for the scoring feature.
"""

from .models import Score, ScoringContext, SenderProfile

__all__ = ["Score", "ScoringContext", "SenderProfile"]
