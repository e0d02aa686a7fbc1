"""
Digest feature package.

Rolls tiered items into point-in-time snapshots: daily now/next/later
digests and a weekly categorized digest of low-tier bulk items.
"""
