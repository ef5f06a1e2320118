"""Git process execution."""

import codecs
from collections.abc import Callable
from dataclasses import dataclass, field
from io import StringIO
from pathlib import Path

import logbook
from PySide6.QtCore import (
    QCoreApplication,
    QEventLoop,
    QObject,
    QProcess,
    QProcessEnvironment,
    QTimer,
    Signal,
)

from .authentication import (
    AuthenticationErrorKind,
    AuthenticationErrorTable,
    secrets_in,
)
from .utils import redact, safe_slot

log = logbook.Logger(__name__)

# Unset any configured credential helper; credentials come from GIT_ASKPASS
NETWORK_ARGUMENTS = ("-c", "credential.helper=")

# Applied to every invocation so git never waits on an interactive prompt
BASE_ENVIRONMENT = {
    "TERM": "dumb",
    "GIT_TERMINAL_PROMPT": "0",
}


class GitError(Exception):
    """Exception raised for Git operation errors."""

    def __init__(self, message: str, result: "GitResult | None" = None) -> None:
        super().__init__(message)
        self.result = result


class AuthenticationError(GitError):
    """Git failed because the remote rejected or required credentials."""

    def __init__(
        self,
        kind: AuthenticationErrorKind,
        message: str,
        result: "GitResult | None" = None,
    ) -> None:
        super().__init__(message, result)
        self.kind = kind


class RefResolutionError(GitError):
    """A ref lookup ended in something other than found or not found."""


class GitCancelledError(GitError):
    """The git process was cancelled or killed before it finished."""


class InvalidBranchError(GitError, ValueError):
    """A branch descriptor is malformed."""


@dataclass
class GitResult:
    """Outcome of a git process."""

    args: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    cancelled: bool = False
    crashed: bool = False
    failed_to_start: bool = False


@dataclass
class GitExecutionOptions:
    """Per-call options for running git.

    Args:
        env: Environment overrides for this call only
        success_exit_codes: Exit codes that count as success
        expected_errors: Patterns that reclassify a failure as an
            authentication error
        on_stdout: Receives decoded stdout chunks as they arrive
        on_stderr: Receives decoded stderr chunks as they arrive
    """

    env: dict[str, str] = field(default_factory=dict)
    success_exit_codes: frozenset[int] = frozenset({0})
    expected_errors: AuthenticationErrorTable | None = None
    on_stdout: Callable[[str], None] | None = None
    on_stderr: Callable[[str], None] | None = None

    @property
    def secrets(self) -> tuple[str, ...]:
        return secrets_in(self.env)


class GitProcess(QObject):
    """Runs a single git command and streams its output."""

    # Signals
    finished = Signal(object)  # GitResult

    def __init__(
        self,
        git_command: str = "git",
        cancel_grace_period_ms: int = 3000,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self.git_command = git_command
        self._cancel_grace_period_ms = cancel_grace_period_ms
        self._process: QProcess | None = None
        self._args: list[str] = []
        self._options = GitExecutionOptions()
        self._stdout_buffer = StringIO()
        self._stderr_buffer = StringIO()
        self._stdout_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._stderr_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._cancelled = False

    @property
    def is_running(self) -> bool:
        """Check if a command is currently running."""
        return (
            self._process is not None
            and self._process.state() != QProcess.ProcessState.NotRunning
        )

    def start(
        self,
        args: list[str],
        cwd: Path,
        options: GitExecutionOptions | None = None,
    ) -> None:
        """Start git without waiting for it. Connect to ``finished`` for the result."""
        if self._process is not None:
            raise GitError("A git command is already running")

        self._args = list(args)
        self._options = options or GitExecutionOptions()
        self._stdout_buffer = StringIO()
        self._stderr_buffer = StringIO()
        self._stdout_decoder.reset()
        self._stderr_decoder.reset()
        self._cancelled = False

        env = QProcessEnvironment.systemEnvironment()
        for name, value in {**BASE_ENVIRONMENT, **self._options.env}.items():
            env.insert(name, value)

        self._process = QProcess(self)
        self._process.setProgram(self.git_command)
        self._process.setArguments(self._args)
        self._process.setWorkingDirectory(str(cwd))
        self._process.setProcessEnvironment(env)

        self._process.readyReadStandardOutput.connect(self._on_stdout)
        self._process.readyReadStandardError.connect(self._on_stderr)
        self._process.finished.connect(self._on_finished)
        self._process.errorOccurred.connect(self._on_error)

        log.debug(
            "Starting git: {} {}",
            self.git_command,
            redact(" ".join(self._args), self._options.secrets),
        )
        log.debug("Working directory: {}", cwd)
        if self._options.env:
            log.debug("Environment overrides: {}", ", ".join(sorted(self._options.env)))

        self._process.start()
        if self._process is not None:
            self._process.closeWriteChannel()

    def run(
        self,
        args: list[str],
        cwd: Path,
        options: GitExecutionOptions | None = None,
    ) -> GitResult:
        """Run git and wait for it, processing Qt events while it runs."""
        if QCoreApplication.instance() is None:
            raise GitError("Running git requires a QCoreApplication instance")

        loop = QEventLoop()
        results: list[GitResult] = []

        def on_finished(result: GitResult) -> None:
            results.append(result)
            loop.quit()

        self.finished.connect(on_finished)
        try:
            self.start(args, cwd, options)
            # finished may already have fired if git failed to start
            if not results:
                loop.exec()
        finally:
            self.finished.disconnect(on_finished)

        return results[0]

    def cancel(self) -> None:
        """Cancel the running command. The result is reported as cancelled."""
        if self._process and self.is_running:
            log.debug("Cancelling git: {}", " ".join(self._args))
            self._cancelled = True
            self._process.terminate()
            QTimer.singleShot(self._cancel_grace_period_ms, self._force_kill_if_running)

    def _force_kill_if_running(self) -> None:
        """Force kill the process if still running after terminate."""
        if self._process and self.is_running:
            self._process.kill()

    @safe_slot
    def _on_stdout(self) -> None:
        if not self._process:
            return

        data = self._stdout_decoder.decode(self._process.readAllStandardOutput().data())
        self._deliver_stdout(data)

    @safe_slot
    def _on_stderr(self) -> None:
        if not self._process:
            return

        data = self._stderr_decoder.decode(self._process.readAllStandardError().data())
        self._deliver_stderr(data)

    def _deliver_stdout(self, data: str) -> None:
        if not data:
            return
        self._stdout_buffer.write(data)
        if self._options.on_stdout:
            self._options.on_stdout(data)

    def _deliver_stderr(self, data: str) -> None:
        if not data:
            return
        self._stderr_buffer.write(data)
        if self._options.on_stderr:
            self._options.on_stderr(data)

    @safe_slot
    def _on_finished(self, exit_code: int, exit_status: QProcess.ExitStatus) -> None:
        """Handle process completion."""
        if not self._process:
            return

        crashed = exit_status == QProcess.ExitStatus.CrashExit
        log.debug(
            "git {} finished with exit_code={}, crashed={}",
            " ".join(self._args[:1]),
            exit_code,
            crashed,
        )

        try:
            # Drain anything that arrived after the last readyRead
            self._on_stdout()
            self._on_stderr()
            self._deliver_stdout(self._stdout_decoder.decode(b"", final=True))
            self._deliver_stderr(self._stderr_decoder.decode(b"", final=True))
        finally:
            self._emit_result(
                GitResult(
                    args=self._args,
                    exit_code=exit_code,
                    stdout=self._stdout_buffer.getvalue(),
                    stderr=self._stderr_buffer.getvalue(),
                    cancelled=self._cancelled,
                    crashed=crashed,
                )
            )

    @safe_slot
    def _on_error(self, error: QProcess.ProcessError) -> None:
        """Handle process errors."""
        if error != QProcess.ProcessError.FailedToStart:
            # finished follows for crashes; other errors only need logging
            log.warning("git process error: {}", error)
            return

        if not self._process:
            return

        log.error("Failed to start {}", self.git_command)
        self._emit_result(
            GitResult(
                args=self._args,
                exit_code=-1,
                stderr="Git is not installed or not in PATH",
                failed_to_start=True,
            )
        )

    def _emit_result(self, result: GitResult) -> None:
        process = self._process
        self._process = None
        if process is not None:
            process.deleteLater()
        self.finished.emit(result)


def check_result(
    result: GitResult, name: str, options: GitExecutionOptions
) -> GitResult:
    """Return the result if it succeeded, otherwise raise the matching GitError."""
    failed = result.cancelled or result.crashed or result.failed_to_start
    if not failed and result.exit_code in options.success_exit_codes:
        return result

    stderr = redact(result.stderr.strip(), options.secrets)

    if result.cancelled:
        raise GitCancelledError(f"{name} was cancelled", result)

    if result.failed_to_start:
        raise GitError(stderr, result)

    if options.expected_errors is not None:
        kind = options.expected_errors.classify(result.stderr)
        if kind is not None:
            raise AuthenticationError(
                kind, f"Authentication failed during {name}: {stderr}", result
            )

    if result.crashed:
        raise GitError(f"Git crashed during {name}", result)

    raise GitError(f"Git command failed: {stderr or 'Unknown error'}", result)


def run_git(
    args: list[str],
    cwd: Path,
    name: str,
    options: GitExecutionOptions | None = None,
    git_command: str = "git",
    process: GitProcess | None = None,
) -> GitResult:
    """Run git to completion and raise if it didn't succeed.

    Args:
        args: Arguments passed to git
        cwd: Working directory, normally the repository root
        name: Short operation name used in logs and error messages
        options: Per-call execution options
        git_command: The git executable
        process: Run on this process instead of a new one, so the caller
            can cancel it

    Returns:
        The GitResult of a successful run
    """
    options = options or GitExecutionOptions()
    if process is not None:
        return check_result(process.run(args, cwd, options), name, options)

    process = GitProcess(git_command=git_command)
    try:
        result = process.run(args, cwd, options)
    finally:
        process.deleteLater()
    return check_result(result, name, options)
