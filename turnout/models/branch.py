"""Branch data model."""

from dataclasses import dataclass
from enum import Enum


class BranchType(Enum):
    """Whether a branch is local or remote-tracking."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class Branch:
    """Represents a branch that can be checked out.

    ``remote`` and ``name_without_remote`` are only meaningful for
    remote-tracking branches, where ``name`` is the full short ref
    (e.g. ``origin/feature``).
    """

    name: str
    type: BranchType = BranchType.LOCAL
    remote: str | None = None
    name_without_remote: str | None = None

    @classmethod
    def local(cls, name: str) -> "Branch":
        """Create a local branch descriptor."""
        return cls(name=name)

    @classmethod
    def remote_tracking(cls, remote: str, name_without_remote: str) -> "Branch":
        """Create a descriptor for ``<remote>/<name_without_remote>``."""
        return cls(
            name=f"{remote}/{name_without_remote}",
            type=BranchType.REMOTE,
            remote=remote,
            name_without_remote=name_without_remote,
        )

    @property
    def is_remote(self) -> bool:
        return self.type is BranchType.REMOTE

    def problems(self) -> list[str]:
        """Return the reasons this descriptor is malformed, if any."""
        problems = []
        if not self.name:
            problems.append("branch name is empty")
        if self.is_remote:
            if not self.remote:
                problems.append("remote branch has no remote")
            if not self.name_without_remote:
                problems.append("remote branch has no name without remote")
        elif self.remote is not None or self.name_without_remote is not None:
            problems.append("local branch must not carry remote information")
        return problems
