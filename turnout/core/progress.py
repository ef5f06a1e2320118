"""Progress parsing for git and Git LFS output."""

import codecs
import logging
import re
import tempfile
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from io import StringIO
from pathlib import Path

from PySide6.QtCore import QObject, QTimer, Signal

from turnout.models.progress import CheckoutProgress

from .utils import safe_slot

logger = logging.getLogger(__name__)

# git redraws progress lines in place with a carriage return
_LINE_BREAK = re.compile(r"\r\n|\r|\n")

_PERCENT_LINE = re.compile(
    r"^(?P<title>[^:]+):\s+(?P<percent>\d{1,3})%\s+\((?P<done>\d+)/(?P<total>\d+)\)"
)
_COUNT_LINE = re.compile(r"^(?P<title>[^:]+):\s+(?P<done>\d+)(?:,\s*done\.?)?$")

_LFS_LINE = re.compile(
    r"^(?P<direction>\w+)\s+(?P<current>\d+)/(?P<files>\d+)\s+"
    r"(?P<transferred>\d+)/(?P<size>\d+)\s+(?P<name>.+)$"
)

_LFS_VERBS = {
    "download": "Downloading",
    "upload": "Uploading",
    "checkout": "Checking out",
}


class LineBuffer:
    """Reassembles lines from output that arrives in arbitrary chunks."""

    def __init__(self) -> None:
        self._pending = StringIO()

    def feed(self, data: str) -> list[str]:
        """Add a chunk and return every line it completed."""
        self._pending.write(data)
        parts = _LINE_BREAK.split(self._pending.getvalue())

        self._pending = StringIO()
        self._pending.write(parts[-1])

        return [line for line in parts[:-1] if line.strip()]

    def flush(self) -> list[str]:
        """Return the incomplete trailing line, if any, and reset."""
        remainder = self._pending.getvalue()
        self._pending = StringIO()
        return [remainder] if remainder.strip() else []


@dataclass(frozen=True)
class ProgressStep:
    """A phase of git output and its share of the overall progress."""

    title: str
    weight: float
    aliases: tuple[str, ...] = ()

    def matches(self, title: str) -> bool:
        return title == self.title or title in self.aliases


@dataclass(frozen=True)
class GitProgress:
    """A recognized progress line from git."""

    title: str
    text: str
    value: float
    percent: int | None = None
    done: int | None = None
    total: int | None = None


class GitProgressParser:
    """Maps git progress lines onto a single 0..1 scale.

    Each step owns a slice of the scale proportional to its weight, in the
    order given. Values never decrease: a line reporting less than what was
    already reported is clamped to the previous value.
    """

    def __init__(self, steps: Sequence[ProgressStep]) -> None:
        if not steps:
            raise ValueError("At least one progress step is required")

        total_weight = sum(step.weight for step in steps)
        if total_weight <= 0:
            raise ValueError("Progress step weights must add up to more than zero")

        self._steps: list[tuple[ProgressStep, float, float]] = []
        offset = 0.0
        for step in steps:
            share = step.weight / total_weight
            self._steps.append((step, offset, share))
            offset += share

        self._last_value = 0.0

    @property
    def last_value(self) -> float:
        return self._last_value

    def parse(self, line: str) -> GitProgress | None:
        """Parse a single line, returning None for anything that isn't progress."""
        text = line.strip()
        percent = done = total = None

        match = _PERCENT_LINE.match(text)
        if match:
            percent = min(int(match.group("percent")), 100)
            done = int(match.group("done"))
            total = int(match.group("total"))
        else:
            match = _COUNT_LINE.match(text)
            if not match:
                return None
            done = int(match.group("done"))

        title = match.group("title").strip()
        for step, offset, share in self._steps:
            if step.matches(title):
                break
        else:
            return None

        fraction = percent / 100 if percent is not None else 0.0
        value = max(self._last_value, min(offset + share * fraction, 1.0))
        self._last_value = value

        return GitProgress(
            title=title,
            text=text,
            value=value,
            percent=percent,
            done=done,
            total=total,
        )


class CheckoutProgressParser(GitProgressParser):
    """Progress parser for `git checkout --progress`."""

    def __init__(self) -> None:
        # Older git versions call the phase "Checking out files"
        super().__init__([
            ProgressStep("Checking out files", 1, aliases=("Updating files",)),
        ])


@dataclass(frozen=True)
class LfsProgress:
    """A parsed line from the file named by GIT_LFS_PROGRESS."""

    direction: str
    current: int
    files: int
    transferred: int
    size: int
    name: str
    value: float

    @property
    def description(self) -> str:
        verb = _LFS_VERBS.get(self.direction, self.direction.capitalize())
        return f"{verb} Git LFS file {self.current} of {self.files}"


class LfsProgressParser:
    """Parses Git LFS transfer progress into a 0..1 value by file count."""

    def __init__(self) -> None:
        self._last_value = 0.0

    @property
    def last_value(self) -> float:
        return self._last_value

    def parse(self, line: str) -> LfsProgress | None:
        match = _LFS_LINE.match(line.strip())
        if not match:
            return None

        current = int(match.group("current"))
        files = int(match.group("files"))
        transferred = int(match.group("transferred"))
        size = int(match.group("size"))
        if files <= 0:
            return None

        file_fraction = transferred / size if size > 0 else 1.0
        raw = (max(current - 1, 0) + min(file_fraction, 1.0)) / files
        value = max(self._last_value, min(raw, 1.0))
        self._last_value = value

        return LfsProgress(
            direction=match.group("direction"),
            current=current,
            files=files,
            transferred=transferred,
            size=size,
            name=match.group("name"),
            value=value,
        )


def create_lfs_progress_file() -> Path:
    """Create an empty file for Git LFS to write its progress to."""
    with tempfile.NamedTemporaryFile(
        prefix="turnout-lfs-", suffix=".log", delete=False
    ) as f:
        return Path(f.name)


class LfsProgressTail(QObject):
    """Polls the Git LFS progress file and emits each new line."""

    line_received = Signal(str)

    def __init__(
        self,
        path: Path,
        interval_ms: int = 100,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._path = path
        self._offset = 0
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._lines = LineBuffer()
        self._timer = QTimer(self)
        self._timer.setInterval(interval_ms)
        self._timer.timeout.connect(self._poll)

    @property
    def path(self) -> Path:
        return self._path

    def start(self) -> None:
        self._timer.start()

    def stop(self) -> None:
        """Stop polling, emit whatever is left, and delete the file."""
        self._timer.stop()
        self._poll()
        for line in self._lines.flush():
            self.line_received.emit(line)
        self._path.unlink(missing_ok=True)

    @safe_slot
    def _poll(self) -> None:
        try:
            with open(self._path, "rb") as f:
                f.seek(self._offset)
                data = f.read()
        except FileNotFoundError:
            return

        if not data:
            return

        self._offset += len(data)
        for line in self._lines.feed(self._decoder.decode(data)):
            self.line_received.emit(line)


class CheckoutProgressReporter:
    """Turns checkout output into CheckoutProgress events for one checkout.

    Git's stderr chunks go to ``feed()``, Git LFS progress lines go to
    ``feed_lfs_line()``. With ``track_lfs`` the overall value is split evenly
    between the checkout phase and the LFS transfer from the start, otherwise
    the split begins with the first LFS line. The value delivered to the
    callback never decreases.
    """

    LFS_SHARE = 0.5

    def __init__(
        self,
        branch_name: str,
        callback: Callable[[CheckoutProgress], None],
        parser: GitProgressParser | None = None,
        track_lfs: bool = False,
    ) -> None:
        self.title = f"Checking out branch {branch_name}"
        self.target_branch = branch_name
        self._callback = callback
        self._parser = parser or CheckoutProgressParser()
        self._lfs_parser = LfsProgressParser()
        self._lines = LineBuffer()
        self._lfs_active = track_lfs
        self._started = False
        self._last_value = 0.0
        self._last_description: str | None = None

    @property
    def last_value(self) -> float:
        return self._last_value

    def start(self) -> None:
        """Report the initial zero progress. Only the first call reports."""
        if self._started:
            return
        self._started = True
        self._callback(CheckoutProgress.start(self.title, self.target_branch))

    def feed(self, chunk: str) -> None:
        for line in self._lines.feed(chunk):
            self._handle_git_line(line)

    def feed_lfs_line(self, line: str) -> None:
        progress = self._lfs_parser.parse(line)
        if progress is None:
            return
        self._lfs_active = True
        self._report(progress.description)

    def finish(self, success: bool) -> None:
        """Drain buffered output and, on success, report completion."""
        for line in self._lines.flush():
            self._handle_git_line(line)

        if success and self._last_value < 1.0:
            self._report(self._last_description or self.title, complete=True)

    def _handle_git_line(self, line: str) -> None:
        progress = self._parser.parse(line)
        if progress is None:
            logger.debug(f"Ignoring checkout output: {line}")
            return
        self._report(progress.text)

    def _overall_value(self) -> float:
        git_value = self._parser.last_value
        if not self._lfs_active:
            return git_value
        lfs_value = self._lfs_parser.last_value
        return (1 - self.LFS_SHARE) * git_value + self.LFS_SHARE * lfs_value

    def _report(self, description: str, complete: bool = False) -> None:
        self.start()
        value = 1.0 if complete else self._overall_value()
        self._last_value = max(self._last_value, value)
        self._last_description = description
        self._callback(
            CheckoutProgress.update(
                self.title, self.target_branch, description, self._last_value
            )
        )
