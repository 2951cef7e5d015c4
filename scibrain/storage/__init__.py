"""Storage layer: key-value backends and the entity facade."""

from scibrain.storage.backend import KeyValueBackend, MemoryBackend, RedisBackend, create_backend
from scibrain.storage.facade import DuplicateEmailError, Storage, bearer_token, count_words
from scibrain.storage.ids import IdAllocator

__all__ = [
    "KeyValueBackend",
    "MemoryBackend",
    "RedisBackend",
    "create_backend",
    "DuplicateEmailError",
    "Storage",
    "bearer_token",
    "count_words",
    "IdAllocator",
]
