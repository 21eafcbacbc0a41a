"""
Repository

Generic table repository: reads, batched writes and upserts built on
query handles.
"""

from rowkeeper.repository.base import BaseRepository, UpsertResult, generate_id

__all__ = ["BaseRepository", "UpsertResult", "generate_id"]
