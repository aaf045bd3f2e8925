from storage.base import BoardStore
from storage.memory import InMemoryBoardStore

__all__ = [
    "BoardStore",
    "InMemoryBoardStore",
]
