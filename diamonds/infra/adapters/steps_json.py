from __future__ import annotations

import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import ConfigurationInvalidError, NotFoundError
from ..models import StepRecord, StepStatus, is_valid_step_status
from .jsonfile import read_json_document, write_json_document
from ...utils.time import now_ms


def _record_from_row(row: Dict[str, Any]) -> StepRecord:
    status = str(row.get("status") or "").strip()
    if not is_valid_step_status(status):
        raise ConfigurationInvalidError(f"invalid step status {status!r} for step {row.get('stepName')!r}")
    return StepRecord(
        step_name=str(row.get("stepName") or ""),
        status=status,  # type: ignore[arg-type]
        proposal_id=str(row.get("proposalId") or ""),
        tx_hash=str(row.get("txHash") or ""),
        address=str(row.get("address") or ""),
        description=str(row.get("description") or ""),
        timestamp=int(row.get("timestamp") or 0),
    )


def _record_to_row(record: StepRecord) -> Dict[str, Any]:
    row: Dict[str, Any] = {"stepName": record.step_name, "status": record.status}
    if record.proposal_id:
        row["proposalId"] = record.proposal_id
    if record.tx_hash:
        row["txHash"] = record.tx_hash
    if record.address:
        row["address"] = record.address
    if record.description:
        row["description"] = record.description
    if record.timestamp:
        row["timestamp"] = record.timestamp
    return row


class JsonStepRegistry:
    """Step registry for one deployment id, one JSON document on disk.

    Writes are last-writer-wins per step name. Runs are serialized per deployment id,
    so the lock only protects against interleaving inside one process.
    """

    def __init__(self, path: Path, *, diamond_name: str, network: str, deployment_id: str) -> None:
        self.path = Path(path)
        self.diamond_name = diamond_name
        self.network = network
        self.deployment_id = deployment_id
        self._lock = threading.Lock()

    def _read(self) -> List[StepRecord]:
        data = read_json_document(self.path, "step registry")
        rows = data.get("steps") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            return []
        return [_record_from_row(r) for r in rows if isinstance(r, dict)]

    def _write(self, records: List[StepRecord]) -> None:
        write_json_document(
            self.path,
            {
                "diamondName": self.diamond_name,
                "network": self.network,
                "deploymentId": self.deployment_id,
                "steps": [_record_to_row(r) for r in records],
            },
        )

    def get_step(self, step_name: str) -> Optional[StepRecord]:
        with self._lock:
            for r in self._read():
                if r.step_name == step_name:
                    return r
        return None

    def save_step(self, record: StepRecord) -> None:
        if not record.timestamp:
            record = replace(record, timestamp=now_ms())
        with self._lock:
            records = self._read()
            for i, r in enumerate(records):
                if r.step_name == record.step_name:
                    records[i] = record
                    break
            else:
                records.append(record)
            self._write(records)

    def update_status(
        self,
        step_name: str,
        status: StepStatus,
        *,
        proposal_id: Optional[str] = None,
        tx_hash: Optional[str] = None,
        address: Optional[str] = None,
    ) -> StepRecord:
        with self._lock:
            records = self._read()
            for i, r in enumerate(records):
                if r.step_name != step_name:
                    continue
                updated = replace(
                    r,
                    status=status,
                    proposal_id=r.proposal_id if proposal_id is None else proposal_id,
                    tx_hash=r.tx_hash if tx_hash is None else tx_hash,
                    address=r.address if address is None else address,
                    timestamp=now_ms(),
                )
                records[i] = updated
                self._write(records)
                return updated
        raise NotFoundError(f"step not found: deployment_id={self.deployment_id!r} step={step_name!r}")

    def list_steps(self) -> List[StepRecord]:
        with self._lock:
            return self._read()

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__, "path": str(self.path), "deployment_id": self.deployment_id}
