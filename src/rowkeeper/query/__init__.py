"""
Query

Lazy statement handles compiled to psycopg.sql and executed by awaiting them.
"""

from rowkeeper.query.builder import QueryHandle, Runner

__all__ = ["QueryHandle", "Runner"]
