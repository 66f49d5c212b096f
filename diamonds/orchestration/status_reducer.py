from __future__ import annotations

from typing import Iterable


def reduce_deployment_status(step_statuses: Iterable[str]) -> str:
    """Compute the canonical status of a delegated deployment from its step records.

    Canonical outputs:
      - CREATED: no steps recorded
      - AWAITING_APPROVAL: any step still pending or approved (resumable)
      - FAILED: no step waiting and at least one step failed
      - COMPLETED: every step executed
    """
    statuses = [str(s or "").strip().lower() for s in step_statuses]
    if not statuses:
        return "CREATED"

    if any(s in ("pending", "approved") for s in statuses):
        return "AWAITING_APPROVAL"

    if any(s == "failed" for s in statuses):
        return "FAILED"

    return "COMPLETED"
