"""Application file storage."""

from edgeship.storage.base import ChangeListener, FileStore
from edgeship.storage.memory import InMemoryFileStore

__all__ = ["ChangeListener", "FileStore", "InMemoryFileStore"]
