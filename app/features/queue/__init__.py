"""
Job queue feature package.

Durable jobs in the record store, an explicit state machine for their
lifecycle, and a bounded-concurrency worker pool that drives them.
"""
