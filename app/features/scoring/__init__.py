"""
Scoring feature package.

Turns a normalized item plus the user's learned scoring context into an
explainable 0-100 priority score and a processing tier.
"""
