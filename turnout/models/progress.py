"""Checkout progress event model."""

from dataclasses import dataclass
from enum import Enum


class ProgressKind(Enum):
    """Discriminator for CheckoutProgress events."""

    START = "start"
    UPDATE = "update"


@dataclass(frozen=True)
class CheckoutProgress:
    """A single progress report for a branch checkout.

    ``START`` events always have a value of 0 and no description. ``UPDATE``
    events carry the engine's text and a value between 0 and 1.
    """

    kind: ProgressKind
    title: str
    target_branch: str
    value: float = 0.0
    description: str | None = None

    @classmethod
    def start(cls, title: str, target_branch: str) -> "CheckoutProgress":
        return cls(kind=ProgressKind.START, title=title, target_branch=target_branch)

    @classmethod
    def update(
        cls, title: str, target_branch: str, description: str, value: float
    ) -> "CheckoutProgress":
        return cls(
            kind=ProgressKind.UPDATE,
            title=title,
            target_branch=target_branch,
            value=value,
            description=description,
        )
