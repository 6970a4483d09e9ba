"""Tests for the GitHub HTTP layer with a mocked ``requests.Session``."""

from __future__ import annotations

import base64
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from ledger_sync.config import SyncConfig, settings
from ledger_sync.errors import RemoteConflictError, RemoteError, RemoteErrorCode
from ledger_sync.github_client import GitDataClient, GitHubClient, TreeChange
from ledger_sync.github_client.auth import GITHUB_API_VERSION, build_session
from ledger_sync.github_client.http import classify_status

API = "https://api.github.com"


def _response(status: int = 200, payload: Any = None, text: str = "") -> MagicMock:
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.ok = status < 400
    response.reason = "Reason"
    response.content = b"{}" if payload is not None else b""
    response.text = text
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture
def git(session: MagicMock) -> GitDataClient:
    return GitDataClient(session, API, "owner/ledger")


class TestAuth:
    def test_session_headers(self) -> None:
        session = build_session(token="secret")

        assert session.headers["Authorization"] == "Bearer secret"
        assert session.headers["Accept"] == "application/vnd.github+json"
        assert session.headers["X-GitHub-Api-Version"] == GITHUB_API_VERSION

    def test_missing_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "github_token", "")
        with pytest.raises(ValueError):
            build_session()


class TestGitDataClient:
    def test_get_branch_ref(self, git: GitDataClient, session: MagicMock) -> None:
        session.request.return_value = _response(payload={"object": {"sha": "abc123"}})

        assert git.get_branch_ref("main") == "abc123"
        method, url = session.request.call_args.args
        assert method == "GET"
        assert url == f"{API}/repos/owner/ledger/git/ref/heads/main"

    def test_get_blob_decodes_base64(self, git: GitDataClient, session: MagicMock) -> None:
        encoded = base64.b64encode("id,amount\n".encode()).decode()
        session.request.return_value = _response(
            payload={"content": encoded, "encoding": "base64"}
        )

        assert git.get_blob("sha1") == "id,amount\n"

    def test_create_blob_sends_base64(self, git: GitDataClient, session: MagicMock) -> None:
        session.request.return_value = _response(201, {"sha": "blob1"})

        assert git.create_blob("héllo") == "blob1"
        body = session.request.call_args.kwargs["json"]
        assert body["encoding"] == "base64"
        assert base64.b64decode(body["content"]).decode("utf-8") == "héllo"

    def test_create_tree_marks_deletions_with_null_sha(
        self, git: GitDataClient, session: MagicMock
    ) -> None:
        session.request.return_value = _response(201, {"sha": "tree1"})

        git.create_tree(
            "base",
            [TreeChange("expenses-2024-01-15.csv", "blob1"), TreeChange("expenses-2024-01-10.csv", None)],
        )

        body = session.request.call_args.kwargs["json"]
        assert body["base_tree"] == "base"
        assert body["tree"][1] == {
            "path": "expenses-2024-01-10.csv",
            "mode": "100644",
            "type": "blob",
            "sha": None,
        }

    def test_update_ref_is_not_forced(self, git: GitDataClient, session: MagicMock) -> None:
        session.request.return_value = _response(200, {"object": {"sha": "c2"}})

        git.update_ref("main", "c2")

        method, url = session.request.call_args.args
        assert method == "PATCH"
        assert url.endswith("/git/refs/heads/main")
        assert session.request.call_args.kwargs["json"] == {"sha": "c2", "force": False}

    def test_truncated_tree_is_an_error(self, git: GitDataClient, session: MagicMock) -> None:
        session.request.return_value = _response(payload={"tree": [], "truncated": True})
        with pytest.raises(RemoteError):
            git.get_tree("t")

    def test_invalid_repo_format(self, session: MagicMock) -> None:
        with pytest.raises(ValueError):
            GitDataClient(session, API, "no-slash")


class TestErrorMapping:
    @pytest.mark.parametrize(
        ("status", "message", "code"),
        [
            (401, "Bad credentials", RemoteErrorCode.AUTH),
            (403, "Resource not accessible", RemoteErrorCode.PERMISSION),
            (403, "API rate limit exceeded", RemoteErrorCode.RATE_LIMIT),
            (404, "Not Found", RemoteErrorCode.NOT_FOUND),
            (409, "Conflict", RemoteErrorCode.CONFLICT),
            (422, "Update is not a fast forward", RemoteErrorCode.CONFLICT),
            (422, "Invalid request", RemoteErrorCode.UNKNOWN),
            (429, "", RemoteErrorCode.RATE_LIMIT),
            (500, "", RemoteErrorCode.UNKNOWN),
        ],
    )
    def test_classify_status(self, status: int, message: str, code: RemoteErrorCode) -> None:
        assert classify_status(status, message) is code

    def test_http_error_raises_remote_error(self, git: GitDataClient, session: MagicMock) -> None:
        session.request.return_value = _response(401, {"message": "Bad credentials"})

        with pytest.raises(RemoteError) as info:
            git.get_branch_ref("main")

        assert info.value.code is RemoteErrorCode.AUTH
        assert info.value.status == 401
        assert "get_branch_ref" in str(info.value)

    def test_rejected_fast_forward_is_a_conflict(
        self, git: GitDataClient, session: MagicMock
    ) -> None:
        session.request.return_value = _response(422, {"message": "Update is not a fast forward"})
        with pytest.raises(RemoteConflictError):
            git.update_ref("main", "c2")

    def test_transport_failure_is_a_network_error(
        self, git: GitDataClient, session: MagicMock
    ) -> None:
        session.request.side_effect = requests.ConnectionError("offline")

        with pytest.raises(RemoteError) as info:
            git.get_branch_ref("main")

        assert info.value.code is RemoteErrorCode.NETWORK

    def test_non_json_error_body(self, git: GitDataClient, session: MagicMock) -> None:
        session.request.return_value = _response(502, text="<html>Bad gateway</html>")
        with pytest.raises(RemoteError) as info:
            git.get_commit("c1")
        assert info.value.code is RemoteErrorCode.UNKNOWN


class TestGitHubClient:
    def test_sub_clients_are_lazy_and_shared(self, session: MagicMock) -> None:
        client = GitHubClient(SyncConfig(token="t", repo="owner/ledger"), session=session)

        assert client.git is client.git
        assert client.git.repo == "owner/ledger"
        assert client.raw is session

    def test_check_access_requires_push(self, session: MagicMock) -> None:
        client = GitHubClient(SyncConfig(token="t", repo="owner/ledger"), session=session)
        session.request.return_value = _response(
            payload={"full_name": "owner/ledger", "permissions": {"push": False}}
        )

        with pytest.raises(RemoteError) as info:
            client.repos.check_access()

        assert info.value.code is RemoteErrorCode.PERMISSION
        assert session.request.call_args.args[1] == f"{API}/repos/owner/ledger"
