"""
Storage Module
Persistence boundary and the in-memory implementation
"""
from .state_store import BaseStateStore
from .memory_store import InMemoryStateStore

__all__ = [
    "BaseStateStore",
    "InMemoryStateStore",
]
