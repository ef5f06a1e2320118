"""Data models for Turnout."""

from .account import Account
from .branch import Branch, BranchType
from .config import AppConfig
from .progress import CheckoutProgress, ProgressKind
from .repository import Repository

__all__ = [
    "Account",
    "AppConfig",
    "Branch",
    "BranchType",
    "CheckoutProgress",
    "ProgressKind",
    "Repository",
]
