"""Application configuration management."""

import json
from dataclasses import dataclass, field
from pathlib import Path


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_dir = Path.home() / ".config" / "turnout"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get the main configuration file path."""
    return get_config_dir() / "config.json"


@dataclass
class AppConfig:
    """Application configuration."""

    # Git settings
    git_command: str = "git"
    askpass_command: str = "turnout-askpass"

    # Progress settings
    track_lfs_progress: bool = True

    # Time given to a cancelled git process before it is killed
    cancel_grace_period_ms: int = 3000

    # Extra stderr patterns treated as authentication failures
    extra_authentication_errors: list[str] = field(default_factory=list)

    def save(self) -> None:
        """Save configuration to file."""
        config_file = get_config_file()
        with open(config_file, "w") as f:
            json.dump(self._to_dict(), f, indent=2)

    def _to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "git": {
                "command": self.git_command,
                "askpass_command": self.askpass_command,
                "cancel_grace_period_ms": self.cancel_grace_period_ms,
            },
            "progress": {
                "track_lfs": self.track_lfs_progress,
            },
            "authentication": {
                "extra_errors": self.extra_authentication_errors,
            },
        }

    @classmethod
    def load(cls) -> "AppConfig":
        """Load configuration from file."""
        config_file = get_config_file()
        if not config_file.exists():
            return cls()

        try:
            with open(config_file) as f:
                data = json.load(f)
            return cls._from_dict(data)
        except (json.JSONDecodeError, KeyError, AttributeError):
            return cls()

    @classmethod
    def _from_dict(cls, data: dict) -> "AppConfig":
        """Create from dictionary."""
        git = data.get("git", {})
        progress = data.get("progress", {})
        authentication = data.get("authentication", {})

        return cls(
            git_command=git.get("command", "git"),
            askpass_command=git.get("askpass_command", "turnout-askpass"),
            cancel_grace_period_ms=git.get("cancel_grace_period_ms", 3000),
            track_lfs_progress=progress.get("track_lfs", True),
            extra_authentication_errors=authentication.get("extra_errors", []),
        )
