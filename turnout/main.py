#!/usr/bin/env python3
"""Main entry point for the Turnout command line."""

import argparse
import logging
import os
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication

from turnout.core import AuthenticationError, GitError, GitService
from turnout.models import Account, AppConfig, CheckoutProgress, ProgressKind

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

TOKEN_VARIABLE = "TURNOUT_ACCOUNT_TOKEN"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_AUTHENTICATION = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="turnout",
        description="Check out branches and restore files with live progress",
    )
    parser.add_argument(
        "--repository",
        "-C",
        type=Path,
        default=Path.cwd(),
        help="Path to a Git repository (defaults to current directory)",
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Don't print progress",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--login",
        help=f"Account login for network operations; the token is read from ${TOKEN_VARIABLE}",
    )
    parser.add_argument(
        "--endpoint",
        default="https://api.github.com",
        help="Account endpoint passed to the credential prompt helper",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    branch_parser = subparsers.add_parser(
        "branch", help="Check out a local or remote-tracking branch"
    )
    branch_parser.add_argument(
        "name", help="Branch name, e.g. 'main' or 'origin/feature'"
    )

    restore_parser = subparsers.add_parser(
        "restore", help="Discard local changes to paths"
    )
    restore_parser.add_argument("paths", nargs="+", help="Paths to restore")

    return parser.parse_args(argv)


def print_progress(progress: CheckoutProgress) -> None:
    """Write a progress event to stderr on a single redrawn line."""
    if progress.kind is ProgressKind.START:
        sys.stderr.write(f"{progress.title}...\n")
        return

    line = f"\r{progress.value:4.0%} {progress.description or ''}"
    sys.stderr.write(line.ljust(72))
    if progress.value >= 1.0:
        sys.stderr.write("\n")
    sys.stderr.flush()


def account_from_args(args: argparse.Namespace) -> Account | None:
    if not args.login:
        return None
    return Account(
        login=args.login,
        endpoint=args.endpoint,
        token=os.environ.get(TOKEN_VARIABLE, ""),
    )


def run(args: argparse.Namespace, service: GitService) -> int:
    repository = service.get_repository(args.repository)

    if args.command == "restore":
        service.checkout_paths(repository.path, args.paths)
        return EXIT_OK

    branch = service.find_branch(repository.path, args.name)
    if branch is None:
        print(f"No such branch: {args.name}", file=sys.stderr)
        return EXIT_FAILURE

    callback = None if args.quiet else print_progress
    service.checkout_branch(
        repository.path, account_from_args(args), branch, callback
    )
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    app.setApplicationName("Turnout")

    service = GitService(config=AppConfig.load())
    try:
        return run(args, service)
    except AuthenticationError as e:
        print(f"Authentication failed: {e}", file=sys.stderr)
        return EXIT_AUTHENTICATION
    except GitError as e:
        print(f"Git error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
