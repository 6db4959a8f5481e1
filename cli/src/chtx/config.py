"""Configuration management for the channel transcripts CLI."""

from dataclasses import dataclass
from pathlib import Path

import yaml

DEFAULT_BASE_URL = "http://127.0.0.1:8000"


def default_config_path() -> Path:
    return Path.home() / ".config" / "channel-transcripts" / "config.yaml"


@dataclass
class Config:
    """CLI configuration."""

    base_url: str = DEFAULT_BASE_URL
    language: str = "es"
    date_filter: str = "all"
    timeout_seconds: float = 30.0

    @classmethod
    def load(cls, config_path: Path | None = None) -> "Config":
        """Load config from ~/.config/channel-transcripts/config.yaml or use defaults."""
        config_path = config_path or default_config_path()

        if config_path.exists():
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
                return cls(
                    base_url=str(data.get("base_url", DEFAULT_BASE_URL)).rstrip("/"),
                    language=str(data.get("language", "es")),
                    date_filter=str(data.get("date_filter", "all")),
                    timeout_seconds=float(data.get("timeout_seconds", 30.0)),
                )

        return cls()

    def save(self, config_path: Path | None = None):
        """Save config to file."""
        config_path = config_path or default_config_path()
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump({
                "base_url": self.base_url,
                "language": self.language,
                "date_filter": self.date_filter,
                "timeout_seconds": self.timeout_seconds,
            }, f)
