"""Pytest configuration and fixtures."""

import os
import subprocess
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from PySide6.QtCore import QCoreApplication

# Git environment for tests - preserve PATH so git can be found
GIT_ENV = {
    **os.environ,
    "GIT_AUTHOR_NAME": "Test User",
    "GIT_AUTHOR_EMAIL": "test@test.com",
    "GIT_COMMITTER_NAME": "Test User",
    "GIT_COMMITTER_EMAIL": "test@test.com",
}


def git(repo_path: Path, *args: str) -> str:
    """Run git in a test repository and return stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=repo_path,
        check=True,
        capture_output=True,
        text=True,
        env=GIT_ENV,
    )
    return result.stdout.strip()


@pytest.fixture
def qapp():
    """Create a QCoreApplication for Qt tests."""
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    yield app


@pytest.fixture
def temp_dir() -> Generator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def home_dir(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the home directory at a temporary directory."""
    home = temp_dir / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def git_repo(temp_dir: Path) -> Generator[Path]:
    """Create a temporary git repository with a 'feature' branch."""
    repo_path = temp_dir / "test-repo"
    repo_path.mkdir()

    git(repo_path, "init")
    git(repo_path, "config", "user.email", "test@test.com")
    git(repo_path, "config", "user.name", "Test User")
    # Disable GPG signing for test commits
    git(repo_path, "config", "commit.gpgsign", "false")

    # Create initial commit
    (repo_path / "README.md").write_text("# Test Repo\n")
    (repo_path / "b").mkdir()
    (repo_path / "b" / "c.txt").write_text("c\n")
    (repo_path / "other.txt").write_text("other\n")
    git(repo_path, "add", ".")
    git(repo_path, "commit", "-m", "Initial commit")

    default_branch = git(repo_path, "rev-parse", "--abbrev-ref", "HEAD")

    # Feature branch with its own file
    git(repo_path, "checkout", "-b", "feature")
    (repo_path / "feature.txt").write_text("feature\n")
    git(repo_path, "add", "feature.txt")
    git(repo_path, "commit", "-m", "Add feature")
    git(repo_path, "checkout", default_branch)

    yield repo_path


@pytest.fixture
def cloned_repo(git_repo: Path, temp_dir: Path) -> Path:
    """Clone git_repo so that origin/* remote-tracking branches exist."""
    clone_path = temp_dir / "clone"
    git(temp_dir, "clone", str(git_repo), str(clone_path))
    return clone_path
