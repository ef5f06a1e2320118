"""Core services for Turnout."""

from .git import (
    AuthenticationError,
    GitCancelledError,
    GitError,
    InvalidBranchError,
    RefResolutionError,
)
from .git_service import GitService

__all__ = [
    "AuthenticationError",
    "GitCancelledError",
    "GitError",
    "GitService",
    "InvalidBranchError",
    "RefResolutionError",
]
