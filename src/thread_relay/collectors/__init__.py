"""Thread collectors driving virtualized lists into complete transcripts."""

from .base import CollectionBatch, CollectionStats
from .thread import IncrementalCollector

__all__ = ["CollectionBatch", "CollectionStats", "IncrementalCollector"]
