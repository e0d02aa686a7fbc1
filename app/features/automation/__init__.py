"""
Automation rules feature package.

Users define trigger/action rules; the rules engine selects which rules
fire for a scored item and queues each selected action as a job.
"""
