"""
Ingestion-and-score pass: pulls raw items from source adapters and runs
them through scoring, tiering and rule selection.
"""
