"""
Learning feedback loop package.

User actions are recorded append-only and folded into per-sender
reputation and per-pattern weights, each action exactly once.
"""
