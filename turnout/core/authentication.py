"""Authentication context for network git operations."""

import re
from collections.abc import Iterable
from enum import Enum

from turnout.models.account import Account

USERNAME_ENV = "TURNOUT_USERNAME"
ENDPOINT_ENV = "TURNOUT_ENDPOINT"
TOKEN_ENV = "TURNOUT_TOKEN"


class AuthenticationErrorKind(Enum):
    """The kinds of authentication failure git reports."""

    HTTPS_AUTHENTICATION_FAILED = "https-authentication-failed"
    HTTPS_CREDENTIALS_REQUIRED = "https-credentials-required"
    SSH_AUTHENTICATION_FAILED = "ssh-authentication-failed"
    SSH_PERMISSION_DENIED = "ssh-permission-denied"
    CUSTOM = "custom"


class AuthenticationErrorTable:
    """Ordered table of stderr patterns that indicate an authentication failure.

    The first matching pattern wins. Tables are immutable; use ``extended()``
    to add patterns.
    """

    def __init__(
        self, entries: Iterable[tuple[AuthenticationErrorKind, str | re.Pattern]] = ()
    ) -> None:
        self._entries: tuple[tuple[AuthenticationErrorKind, re.Pattern], ...] = tuple(
            (kind, re.compile(pattern) if isinstance(pattern, str) else pattern)
            for kind, pattern in entries
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def classify(self, text: str) -> AuthenticationErrorKind | None:
        """Return the kind of authentication failure in text, if any."""
        for kind, pattern in self._entries:
            if pattern.search(text):
                return kind
        return None

    def extended(
        self,
        patterns: Iterable[str],
        kind: AuthenticationErrorKind = AuthenticationErrorKind.CUSTOM,
    ) -> "AuthenticationErrorTable":
        """Return a new table with extra patterns appended."""
        return AuthenticationErrorTable(
            [*self._entries, *((kind, pattern) for pattern in patterns)]
        )


AUTHENTICATION_ERRORS = AuthenticationErrorTable([
    (
        AuthenticationErrorKind.HTTPS_AUTHENTICATION_FAILED,
        r"fatal: Authentication failed for '(.+)'",
    ),
    (
        AuthenticationErrorKind.HTTPS_AUTHENTICATION_FAILED,
        r"remote: Invalid username or password",
    ),
    (
        AuthenticationErrorKind.HTTPS_CREDENTIALS_REQUIRED,
        r"fatal: could not read (Username|Password) for '(.+)': "
        r"terminal prompts disabled",
    ),
    (
        AuthenticationErrorKind.SSH_AUTHENTICATION_FAILED,
        r"fatal: Authentication failed",
    ),
    (
        AuthenticationErrorKind.SSH_PERMISSION_DENIED,
        r"Permission denied \(publickey[^)]*\)",
    ),
    (
        AuthenticationErrorKind.SSH_PERMISSION_DENIED,
        r"fatal: Could not read from remote repository\.",
    ),
])


def env_for_authentication(
    account: Account | None, askpass_command: str = "turnout-askpass"
) -> dict[str, str]:
    """Build the environment variables that authenticate a git invocation.

    Secrets travel through the environment only, never the argument list.
    A new dict is returned on every call.

    Args:
        account: The account to authenticate as, or None for no overrides
        askpass_command: Program git runs to answer credential prompts

    Returns:
        Mapping of environment variable name to value
    """
    if account is None:
        return {}

    return {
        "GIT_ASKPASS": askpass_command,
        USERNAME_ENV: account.login,
        ENDPOINT_ENV: account.endpoint,
        TOKEN_ENV: account.token,
    }


SECRET_ENVIRONMENT_KEYS = frozenset({TOKEN_ENV})


def secrets_in(env: dict[str, str]) -> tuple[str, ...]:
    """Return the secret values carried by an authentication environment."""
    return tuple(
        value for name, value in env.items()
        if name in SECRET_ENVIRONMENT_KEYS and value
    )
