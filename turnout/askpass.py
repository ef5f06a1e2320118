"""GIT_ASKPASS helper that answers credential prompts from the environment.

git runs this program with the prompt as its only argument and reads the
answer from stdout.
"""

import os
import sys

from turnout.core.authentication import TOKEN_ENV, USERNAME_ENV


def answer(prompt: str, env: dict[str, str]) -> str | None:
    """Return the answer to a credential prompt, or None if it isn't one."""
    normalized = prompt.strip().lower()
    if normalized.startswith("username"):
        return env.get(USERNAME_ENV)
    if normalized.startswith("password"):
        return env.get(TOKEN_ENV)
    return None


def main() -> int:
    prompt = sys.argv[1] if len(sys.argv) > 1 else ""
    value = answer(prompt, dict(os.environ))
    if value is None:
        return 1

    sys.stdout.write(value + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
