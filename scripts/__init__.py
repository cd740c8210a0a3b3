"""Utility scripts for operating provider search.

Scripts include:
- ``init_db.py``: create the PostGIS schema for the read model.
- ``backfill_providers.py``: publish became-searchable events from a snapshot.
"""
