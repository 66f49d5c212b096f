from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from ..errors import ChainOperationError, NotFoundError, RetryableError
from ..models import ProposalState


# Remote proposal statuses folded onto the four step statuses.
_STATUS_MAP: Dict[str, str] = {
    "pending": "pending",
    "submitted": "pending",
    "queued": "pending",
    "approved": "approved",
    "executing": "approved",
    "executed": "executed",
    "completed": "executed",
    "succeeded": "executed",
    "failed": "failed",
    "rejected": "failed",
    "cancelled": "failed",
    "canceled": "failed",
}


def normalize_proposal_status(value: Any) -> str:
    return _STATUS_MAP.get(str(value or "").strip().lower(), "pending")


def _proposal_state(proposal_id: str, data: Dict[str, Any]) -> ProposalState:
    return ProposalState(
        proposal_id=proposal_id,
        status=normalize_proposal_status(data.get("status")),  # type: ignore[arg-type]
        tx_hash=str(data.get("txHash") or ""),
        address=str(data.get("address") or data.get("contractAddress") or ""),
        error=str(data.get("error") or ""),
    )


class HttpApprovalService:
    """Approval-service client speaking a small JSON proposals API.

    POST /proposals                 -> {"id": ...}
    GET  /proposals?title=...       -> {"proposals": [...]} oldest first
    GET  /proposals/{id}            -> {"id", "status", "txHash"?, "address"?, "error"?}
    POST /proposals/{id}/execute    -> 2xx
    """

    def __init__(self, base_url: str, api_key: str = "", *, timeout_s: int = 30) -> None:
        self.base_url = str(base_url or "").rstrip("/")
        if not self.base_url:
            raise ChainOperationError("approval service base_url is empty")
        self.api_key = api_key
        self.timeout_s = int(timeout_s)

    def _headers(self) -> Dict[str, str]:
        h = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.api_key:
            h["Authorization"] = f"Bearer {self.api_key}"
        return h

    def _request(
        self, method: str, path: str, payload: Any = None, params: Optional[Dict[str, str]] = None
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            r = requests.request(
                method, url, headers=self._headers(), json=payload, params=params, timeout=self.timeout_s
            )
        except requests.RequestException as e:
            raise RetryableError(f"approval service unreachable: {method} {url}: {e}") from e
        if r.status_code >= 500 or r.status_code == 429:
            raise RetryableError(f"approval service error: {method} {url}: {r.status_code}: {r.text[:2000]}")
        if r.status_code == 404:
            raise NotFoundError(f"approval service returned 404: {method} {url}")
        if r.status_code >= 400:
            raise ChainOperationError(f"approval service rejected request: {method} {url}: {r.status_code}: {r.text[:2000]}")
        return r

    def create_proposal(self, payload: Dict[str, Any]) -> str:
        data = self._request("POST", "/proposals", payload).json()
        proposal_id = str((data or {}).get("id") or (data or {}).get("proposalId") or "").strip()
        if not proposal_id:
            raise ChainOperationError(f"approval service returned no proposal id: {data!r}")
        return proposal_id

    def get_proposal(self, proposal_id: str) -> ProposalState:
        data = self._request("GET", f"/proposals/{proposal_id}").json() or {}
        return _proposal_state(proposal_id, data)

    def find_proposals(self, title: str) -> List[ProposalState]:
        data = self._request("GET", "/proposals", params={"title": title}).json() or {}
        rows = data.get("proposals") if isinstance(data, dict) else data
        out: List[ProposalState] = []
        for row in rows or []:
            if not isinstance(row, dict):
                continue
            proposal_id = str(row.get("id") or row.get("proposalId") or "").strip()
            if proposal_id:
                out.append(_proposal_state(proposal_id, row))
        return out

    def execute_proposal(self, proposal_id: str) -> None:
        self._request("POST", f"/proposals/{proposal_id}/execute", {})

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__, "base_url": self.base_url}
