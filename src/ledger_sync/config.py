from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel

DEFAULT_API_URL = "https://api.github.com"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class SyncConfig(BaseModel):
    """Connection details for the remote repository."""

    token: str
    repo: str
    branch: str = "main"
    api_url: str = DEFAULT_API_URL

    @property
    def owner(self) -> str:
        return self.repo.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.repo.split("/", 1)[1]


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self) -> None:
        self.github_token: str = os.environ.get("LEDGER_SYNC_GITHUB_TOKEN", "")
        self.repo: str = os.environ.get("LEDGER_SYNC_REPO", "")
        self.branch: str = os.environ.get("LEDGER_SYNC_BRANCH", "main")
        self.api_url: str = os.environ.get("LEDGER_SYNC_API_URL", DEFAULT_API_URL)
        self.data_dir: str = os.environ.get("LEDGER_SYNC_DATA_DIR", "./.ledger-sync/")
        self.conflict_threshold_ms: int = int(
            os.environ.get("LEDGER_SYNC_CONFLICT_THRESHOLD_MS", "1000")
        )
        self.initial_days: int = int(os.environ.get("LEDGER_SYNC_INITIAL_DAYS", "7"))
        self.sync_settings: bool = _env_bool("LEDGER_SYNC_SYNC_SETTINGS")

    @property
    def ledger_file(self) -> Path:
        return Path(self.data_dir) / "ledger.json"

    @property
    def hashes_file(self) -> Path:
        return Path(self.data_dir) / "content-hashes.json"

    @property
    def pending_file(self) -> Path:
        return Path(self.data_dir) / "pending-changes.json"

    @property
    def window_file(self) -> Path:
        return Path(self.data_dir) / "sync-window.json"

    def validate(self) -> None:
        if not self.github_token:
            raise ValueError("LEDGER_SYNC_GITHUB_TOKEN environment variable is required")
        owner, _, name = self.repo.partition("/")
        if not owner or not name:
            raise ValueError("LEDGER_SYNC_REPO must be in the form owner/repo")
        if not self.branch:
            raise ValueError("LEDGER_SYNC_BRANCH must not be empty")

    def sync_config(self) -> SyncConfig:
        self.validate()
        return SyncConfig(
            token=self.github_token,
            repo=self.repo,
            branch=self.branch,
            api_url=self.api_url,
        )


settings = Settings()
