from __future__ import annotations

import hashlib
from typing import Iterable

from ..infra.models import CutOperation, Version, format_version


def _hash(parts: list[str]) -> str:
    msg = "|".join([str(x) for x in parts])
    return hashlib.sha256(msg.encode("utf-8")).hexdigest()[:24]


def deployment_id(diamond_name: str, network: str, chain_id: int) -> str:
    return f"{diamond_name}-{network}-{chain_id}".lower()


def _slug(name: str) -> str:
    return str(name).strip().lower()


def step_deploy_diamond_cut_facet() -> str:
    return "deploy-diamondcutfacet"


def step_deploy_diamond() -> str:
    return "deploy-diamond"


def step_deploy_facet(facet_name: str, version: Version) -> str:
    return f"deploy-{_slug(facet_name)}-v{format_version(version)}"


def step_facet_init(facet_name: str, version: Version) -> str:
    return f"init-{_slug(facet_name)}-v{format_version(version)}"


def cut_fingerprint(operations: Iterable[CutOperation], init_address: str, init_calldata: str) -> str:
    """Stable hash of an ordered cut and its init payload."""
    parts: list[str] = []
    for op in operations:
        parts.append(f"{op.action}:{op.facet_name}:{(op.facet_address or '').lower()}:{','.join(op.selectors)}")
    parts.append(f"init:{init_address.lower()}:{init_calldata.lower()}")
    return _hash(parts)


def step_diamond_cut(operations: Iterable[CutOperation], init_address: str, init_calldata: str) -> str:
    """Step name of a cut. A different plan gets a different step, so an earlier cut is never mistaken for it."""
    return "diamond-cut-" + cut_fingerprint(operations, init_address, init_calldata)
