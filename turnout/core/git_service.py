"""Git service for branch and path checkout."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from PySide6.QtCore import QObject, Signal

from turnout.models.account import Account
from turnout.models.branch import Branch
from turnout.models.config import AppConfig
from turnout.models.progress import CheckoutProgress
from turnout.models.repository import Repository

from .authentication import (
    AUTHENTICATION_ERRORS,
    AuthenticationErrorTable,
    env_for_authentication,
)
from .git import (
    NETWORK_ARGUMENTS,
    GitCancelledError,
    GitError,
    GitExecutionOptions,
    GitProcess,
    GitResult,
    InvalidBranchError,
    RefResolutionError,
    check_result,
    run_git,
)
from .progress import CheckoutProgressReporter, LfsProgressTail, create_lfs_progress_file
from .utils import safe_slot

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[CheckoutProgress], None]


@dataclass
class _PendingCheckout:
    """Bookkeeping for a checkout started with checkout_branch_async()."""

    branch: Branch
    options: GitExecutionOptions
    reporter: CheckoutProgressReporter
    lfs_tail: LfsProgressTail | None


class GitService(QObject):
    """Service for checking out branches and paths."""

    # Async checkout signals
    checkout_started = Signal(Path)  # repo_path
    checkout_progress = Signal(Path, object)  # repo_path, CheckoutProgress
    checkout_finished = Signal(Path, bool, str)  # repo_path, success, message

    def __init__(
        self,
        config: AppConfig | None = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._config = config or AppConfig()
        self._authentication_errors = AUTHENTICATION_ERRORS.extended(
            self._config.extra_authentication_errors
        )
        self._processes: dict[Path, GitProcess] = {}
        self._pending: dict[Path, _PendingCheckout] = {}

    @property
    def authentication_errors(self) -> AuthenticationErrorTable:
        """The table used to recognize authentication failures."""
        return self._authentication_errors

    def _run_git(
        self,
        args: list[str],
        cwd: Path,
        name: str,
        options: GitExecutionOptions | None = None,
        process: GitProcess | None = None,
    ) -> GitResult:
        """Run a git command and return the result."""
        return run_git(
            args,
            cwd,
            name,
            options,
            git_command=self._config.git_command,
            process=process,
        )

    def _new_process(self) -> GitProcess:
        return GitProcess(
            git_command=self._config.git_command,
            cancel_grace_period_ms=self._config.cancel_grace_period_ms,
            parent=self,
        )

    def is_git_repository(self, path: Path) -> bool:
        """Check if a path is a Git repository."""
        try:
            self._run_git(["rev-parse", "--git-dir"], path, "is_git_repository")
            return True
        except GitError:
            return False

    def get_repository(self, path: Path) -> Repository:
        """Get the repository whose working tree contains path."""
        if not self.is_git_repository(path):
            raise GitError(f"Not a Git repository: {path}")

        result = self._run_git(
            ["rev-parse", "--show-toplevel"], path, "get_repository"
        )
        return Repository(path=Path(result.stdout.strip()).resolve())

    def list_branches(
        self, repo_path: Path, include_remote: bool = True
    ) -> tuple[list[str], list[str]]:
        """List local and remote branches.

        Returns:
            Tuple of (local_branches, remote_branches)
        """
        result = self._run_git(
            ["branch", "--format=%(refname:short)"], repo_path, "list_branches"
        )
        local_branches = [
            b.strip() for b in result.stdout.strip().split("\n") if b.strip()
        ]

        remote_branches = []
        if include_remote:
            # Full ref names: the short form of origin/HEAD is just "origin"
            result = self._run_git(
                ["branch", "-r", "--format=%(refname)"],
                repo_path,
                "list_branches",
            )
            remote_branches = [
                b.strip().removeprefix("refs/remotes/")
                for b in result.stdout.strip().split("\n")
                if b.strip() and not b.strip().endswith("/HEAD")
            ]

        return local_branches, remote_branches

    def list_remotes(self, repo_path: Path) -> list[str]:
        """List configured remote names."""
        result = self._run_git(["remote"], repo_path, "list_remotes")
        return [r.strip() for r in result.stdout.split("\n") if r.strip()]

    def get_current_branch(self, repo_path: Path) -> str:
        """Get the current branch name."""
        result = self._run_git(
            ["rev-parse", "--abbrev-ref", "HEAD"], repo_path, "get_current_branch"
        )
        return result.stdout.strip()

    def find_branch(self, repo_path: Path, name: str) -> Branch | None:
        """Build a branch descriptor for a local or remote-tracking branch name.

        Local branches win over remote-tracking branches of the same name.
        """
        local_branches, remote_branches = self.list_branches(repo_path)
        if name in local_branches:
            return Branch.local(name)

        if name not in remote_branches:
            return None

        # Longest remote first so "upstream/x" isn't claimed by a remote "up"
        for remote in sorted(self.list_remotes(repo_path), key=len, reverse=True):
            prefix = f"{remote}/"
            if name.startswith(prefix) and len(name) > len(prefix):
                return Branch.remote_tracking(remote, name[len(prefix):])

        return None

    def resolve_local_branch_name(
        self,
        repo_path: Path,
        branch: Branch,
        process: GitProcess | None = None,
    ) -> str:
        """Pick the local branch name to create for a remote-tracking branch.

        If a local branch with the short name already exists, the new branch
        is named ``<remote>-<short name>`` instead of reusing it.

        Args:
            repo_path: Path to the repository
            branch: A remote-tracking branch
            process: Run the lookup on this process so it can be cancelled

        Returns:
            The local branch name to create
        """
        _validate_branch(branch)
        if not branch.is_remote:
            raise InvalidBranchError(f"Not a remote-tracking branch: {branch.name}")

        # rev-parse exits 0 if the ref exists and 1 if it doesn't
        options = GitExecutionOptions(success_exit_codes=frozenset({0, 1}))
        try:
            result = self._run_git(
                ["rev-parse", "--verify", "--quiet",
                 f"refs/heads/{branch.name_without_remote}"],
                repo_path,
                "check_local_branch_exists",
                options,
                process=process,
            )
        except GitCancelledError:
            raise
        except GitError as e:
            raise RefResolutionError(
                f"Could not check for local branch "
                f"'{branch.name_without_remote}': {e}",
                e.result,
            ) from e

        if result.exit_code == 0:
            return f"{branch.remote}-{branch.name_without_remote}"
        return branch.name_without_remote

    def _checkout_options(
        self,
        account: Account | None,
        branch: Branch,
        progress_callback: ProgressCallback | None,
    ) -> tuple[GitExecutionOptions, CheckoutProgressReporter | None, LfsProgressTail | None]:
        """Build execution options, wiring progress when a callback is given."""
        options = GitExecutionOptions(
            env=env_for_authentication(account, self._config.askpass_command),
            expected_errors=self._authentication_errors,
        )
        if progress_callback is None:
            return options, None, None

        reporter = CheckoutProgressReporter(
            branch.name,
            progress_callback,
            track_lfs=self._config.track_lfs_progress,
        )
        options.on_stderr = reporter.feed
        # Report before git has produced any output
        reporter.start()

        lfs_tail = None
        if self._config.track_lfs_progress:
            lfs_path = create_lfs_progress_file()
            options.env["GIT_LFS_PROGRESS"] = str(lfs_path)
            lfs_tail = LfsProgressTail(lfs_path, parent=self)
            lfs_tail.line_received.connect(reporter.feed_lfs_line)

        return options, reporter, lfs_tail

    def _checkout_args(
        self,
        repo_path: Path,
        branch: Branch,
        with_progress: bool,
        process: GitProcess | None = None,
    ) -> list[str]:
        """Assemble the arguments for checking out a branch."""
        args = [*NETWORK_ARGUMENTS, "checkout"]
        if with_progress:
            args.append("--progress")

        if branch.is_remote:
            local_name = self.resolve_local_branch_name(repo_path, branch, process)
            args.extend(["-b", local_name, branch.name])
        else:
            args.append(branch.name)

        # A branch name must never be read as a path
        args.append("--")
        return args

    def checkout_branch(
        self,
        repo_path: Path,
        account: Account | None,
        branch: Branch,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Check out a branch, creating a local branch for remote-tracking ones.

        Blocks until git finishes while still processing Qt events, so the
        checkout can be cancelled with cancel_checkout().

        Args:
            repo_path: Path to the repository
            account: Account to authenticate network operations with, if any
            branch: The branch to check out
            progress_callback: Receives CheckoutProgress events. When given,
                git runs with --progress.

        Raises:
            InvalidBranchError: The branch descriptor is malformed
            RefResolutionError: The local branch lookup failed
            AuthenticationError: The remote rejected or required credentials
            GitCancelledError: The checkout was cancelled
            GitError: Any other git failure
        """
        _validate_branch(branch)
        logger.info(f"Checking out {branch.name} in {repo_path}")

        options, reporter, lfs_tail = self._checkout_options(
            account, branch, progress_callback
        )
        process = self._new_process()
        # Registered before the ref lookup so cancel_checkout() covers it too
        self._processes[repo_path] = process
        success = False
        try:
            args = self._checkout_args(
                repo_path, branch, reporter is not None, process
            )
            if lfs_tail is not None:
                lfs_tail.start()
            self._run_git(args, repo_path, "checkout_branch", options, process=process)
            success = True
        finally:
            self._release(repo_path, process)
            if lfs_tail is not None:
                lfs_tail.stop()
                lfs_tail.deleteLater()
            if reporter is not None:
                reporter.finish(success)

    def checkout_branch_async(
        self,
        repo_path: Path,
        account: Account | None,
        branch: Branch,
    ) -> None:
        """Check out a branch without blocking.

        Progress is reported through checkout_progress and the outcome through
        checkout_finished. A request for a repository that already has a
        checkout running is ignored.
        """
        if repo_path in self._processes:
            logger.warning(f"Checkout already running in {repo_path}")
            return

        # Reserve the repository before anything that runs an event loop
        process = self._new_process()
        self._processes[repo_path] = process
        self.checkout_started.emit(repo_path)

        try:
            _validate_branch(branch)
        except InvalidBranchError as e:
            self._release(repo_path, process)
            self.checkout_finished.emit(repo_path, False, str(e))
            return

        options, reporter, lfs_tail = self._checkout_options(
            account,
            branch,
            lambda progress: self.checkout_progress.emit(repo_path, progress),
        )
        try:
            args = self._checkout_args(
                repo_path, branch, with_progress=True, process=process
            )
        except GitError as e:
            self._release(repo_path, process)
            if lfs_tail is not None:
                lfs_tail.stop()
                lfs_tail.deleteLater()
            reporter.finish(False)
            self.checkout_finished.emit(repo_path, False, str(e))
            return

        # Connected after the ref lookup, which finishes on the same process
        process.finished.connect(
            lambda result: self._on_checkout_finished(repo_path, result)
        )
        # Pending before start: a failed start reports synchronously
        self._pending[repo_path] = _PendingCheckout(
            branch=branch, options=options, reporter=reporter, lfs_tail=lfs_tail
        )
        if lfs_tail is not None:
            lfs_tail.start()
        process.start(args, repo_path, options)

    def _release(self, repo_path: Path, process: GitProcess) -> None:
        if self._processes.get(repo_path) is process:
            del self._processes[repo_path]
        process.deleteLater()

    @safe_slot
    def _on_checkout_finished(self, repo_path: Path, result: GitResult) -> None:
        """Handle async checkout completion."""
        process = self._processes.pop(repo_path, None)
        pending = self._pending.pop(repo_path, None)
        if process is not None:
            process.deleteLater()
        if pending is None:
            return

        if pending.lfs_tail is not None:
            pending.lfs_tail.stop()
            pending.lfs_tail.deleteLater()

        try:
            check_result(result, "checkout_branch", pending.options)
            success, message = True, f"Checked out {pending.branch.name}"
        except GitError as e:
            success, message = False, str(e)

        pending.reporter.finish(success)
        self.checkout_finished.emit(repo_path, success, message)

    def is_checking_out(self, repo_path: Path) -> bool:
        """Check if a checkout is currently running in a repository."""
        return repo_path in self._processes

    def cancel_checkout(self, repo_path: Path) -> None:
        """Cancel the checkout running in a repository, if any."""
        process = self._processes.get(repo_path)
        if process is not None:
            process.cancel()

    def checkout_paths(self, repo_path: Path, paths: Sequence[str]) -> None:
        """Restore paths to their state at HEAD, discarding local changes.

        Args:
            repo_path: Path to the repository
            paths: Paths relative to the repository root
        """
        paths = list(paths)
        if not paths:
            return

        self._run_git(["checkout", "HEAD", "--", *paths], repo_path, "checkout_paths")


def _validate_branch(branch: Branch) -> None:
    problems = branch.problems()
    if problems:
        raise InvalidBranchError(
            f"Invalid branch '{branch.name}': {'; '.join(problems)}"
        )
