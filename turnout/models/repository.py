"""Repository data model."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Repository:
    """Represents a Git working tree on disk."""

    path: Path

    def __hash__(self) -> int:
        return hash(str(self.path))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Repository):
            return False
        return self.path == other.path
