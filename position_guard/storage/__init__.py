"""Storage backends."""
from .memory import MemoryStore, wall_clock

__all__ = ["MemoryStore", "wall_clock"]
