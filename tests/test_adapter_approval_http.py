from __future__ import annotations

from typing import Any, Dict, List

import pytest
import requests

from _testutil import ensure_repo_on_path

ensure_repo_on_path()

from diamonds.infra.adapters.approval_http import HttpApprovalService, normalize_proposal_status  # noqa: E402
from diamonds.infra.errors import ChainOperationError, NotFoundError, RetryableError  # noqa: E402


class _Resp:
    def __init__(self, status_code: int, body: Any = None) -> None:
        self.status_code = status_code
        self._body = body
        self.text = str(body)

    def json(self) -> Any:
        return self._body


def _install(monkeypatch: pytest.MonkeyPatch, responses: List[Any]) -> List[Dict[str, Any]]:
    calls: List[Dict[str, Any]] = []

    def fake_request(method, url, headers=None, json=None, params=None, timeout=None):
        calls.append({"method": method, "url": url, "headers": headers, "json": json, "params": params, "timeout": timeout})
        r = responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r

    monkeypatch.setattr(requests, "request", fake_request)
    return calls


def test_proposal_lifecycle(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(
        monkeypatch,
        [
            _Resp(201, {"id": "prop-7"}),
            _Resp(200, {"id": "prop-7", "status": "Succeeded", "txHash": "0xabc", "contractAddress": "0x" + "1" * 40}),
            _Resp(204, None),
        ],
    )
    svc = HttpApprovalService("https://approvals.example.invalid/", "secret", timeout_s=5)

    assert svc.create_proposal({"kind": "call", "to": "0x1", "data": "0x"}) == "prop-7"
    state = svc.get_proposal("prop-7")
    assert state.status == "executed"
    assert state.tx_hash == "0xabc"
    assert state.address == "0x" + "1" * 40
    svc.execute_proposal("prop-7")

    assert [c["method"] for c in calls] == ["POST", "GET", "POST"]
    assert calls[0]["url"] == "https://approvals.example.invalid/proposals"
    assert calls[2]["url"] == "https://approvals.example.invalid/proposals/prop-7/execute"
    assert calls[0]["headers"]["Authorization"] == "Bearer secret"
    assert calls[0]["timeout"] == 5


def test_error_mapping(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(
        monkeypatch,
        [
            requests.ConnectionError("refused"),
            _Resp(503, "unavailable"),
            _Resp(429, "slow down"),
            _Resp(404, "nope"),
            _Resp(400, "bad"),
            _Resp(200, {}),
        ],
    )
    svc = HttpApprovalService("https://approvals.example.invalid")
    with pytest.raises(RetryableError):
        svc.get_proposal("p")
    with pytest.raises(RetryableError):
        svc.get_proposal("p")
    with pytest.raises(RetryableError):
        svc.get_proposal("p")
    with pytest.raises(NotFoundError):
        svc.get_proposal("p")
    with pytest.raises(ChainOperationError):
        svc.get_proposal("p")
    with pytest.raises(ChainOperationError):
        svc.create_proposal({})


def test_status_normalization() -> None:
    assert normalize_proposal_status("QUEUED") == "pending"
    assert normalize_proposal_status("approved") == "approved"
    assert normalize_proposal_status("rejected") == "failed"
    assert normalize_proposal_status(None) == "pending"


def test_find_proposals_by_title(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(
        monkeypatch,
        [
            _Resp(
                200,
                {
                    "proposals": [
                        {"id": "prop-1", "status": "rejected"},
                        {"proposalId": "prop-2", "status": "queued"},
                        {"status": "pending"},
                    ]
                },
            ),
            _Resp(200, []),
        ],
    )
    svc = HttpApprovalService("https://approvals.example.invalid")

    found = svc.find_proposals("deploy-diamond")
    assert [(p.proposal_id, p.status) for p in found] == [("prop-1", "failed"), ("prop-2", "pending")]
    assert calls[0]["url"] == "https://approvals.example.invalid/proposals"
    assert calls[0]["params"] == {"title": "deploy-diamond"}
    assert svc.find_proposals("deploy-diamond") == []
