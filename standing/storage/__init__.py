"""Persistence layer: repository protocols plus in-memory and Postgres implementations."""

from standing.storage.base import Storage, UnitOfWork
from standing.storage.memory import InMemoryStorage

__all__ = ["InMemoryStorage", "Storage", "UnitOfWork"]
