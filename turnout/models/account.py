"""Account data model."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Account:
    """Credentials used to authenticate network operations."""

    login: str
    endpoint: str
    token: str = field(repr=False)
