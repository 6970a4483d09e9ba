from __future__ import annotations

from pathlib import Path

import pytest

from helpers import FakeGit, FakeGitHubClient
from ledger_sync.store import LocalRecordStore
from ledger_sync.sync.engine import SyncEngine
from ledger_sync.sync.hashes import ContentHashStore
from ledger_sync.sync.remote import RemoteLedger
from ledger_sync.sync.tracker import ChangeTracker


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def remote(fake_git: FakeGit) -> RemoteLedger:
    return RemoteLedger(FakeGitHubClient(fake_git))


@pytest.fixture
def store(tmp_path: Path) -> LocalRecordStore:
    return LocalRecordStore(tmp_path / "ledger.json")


@pytest.fixture
def hash_store(tmp_path: Path) -> ContentHashStore:
    return ContentHashStore(tmp_path / "content-hashes.json")


@pytest.fixture
def tracker(tmp_path: Path) -> ChangeTracker:
    return ChangeTracker(tmp_path / "pending-changes.json")


@pytest.fixture
def engine(
    remote: RemoteLedger,
    store: LocalRecordStore,
    hash_store: ContentHashStore,
    tracker: ChangeTracker,
) -> SyncEngine:
    return SyncEngine(remote, store, hash_store, tracker, conflict_threshold_ms=1000)
