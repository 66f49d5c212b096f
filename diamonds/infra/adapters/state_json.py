from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import ConfigurationInvalidError
from ..models import DeployedFacet, DeployedState, PendingPostCut, Version, parse_version
from .jsonfile import read_json_document, write_json_document


def _opt_version(value: Any) -> Optional[Version]:
    if value is None or value == "":
        return None
    try:
        return parse_version(value)
    except ValueError:
        return None


def _pending_from_dict(raw: Any) -> Dict[str, PendingPostCut]:
    if not isinstance(raw, dict):
        return {}
    out: Dict[str, PendingPostCut] = {}
    for name, entry in raw.items():
        entry = entry if isinstance(entry, dict) else {}
        version = _opt_version(entry.get("version"))
        if version is None:
            raise ConfigurationInvalidError(f"PendingPostCut.{name} has no version")
        out[str(name)] = PendingPostCut(
            version=version,
            initializer=str(entry.get("initializer") or ""),
            callbacks=tuple(str(c) for c in (entry.get("callbacks") or [])),
            initialized=bool(entry.get("initialized", False)),
        )
    return out


def state_from_dict(data: Dict[str, Any]) -> DeployedState:
    """Parse a deployed-state document. Missing keys read as empty."""
    if not isinstance(data, dict):
        raise ConfigurationInvalidError("deployed state document must be a JSON object")

    facets: Dict[str, DeployedFacet] = {}
    raw_facets = data.get("DeployedFacets") or {}
    if not isinstance(raw_facets, dict):
        raise ConfigurationInvalidError("DeployedFacets must be an object")
    for name, raw in raw_facets.items():
        raw = raw if isinstance(raw, dict) else {}
        facets[str(name)] = DeployedFacet(
            address=str(raw.get("address") or ""),
            tx_hash=str(raw.get("tx_hash") or ""),
            version=_opt_version(raw.get("version")),
            selectors=[str(s).lower() for s in (raw.get("funcSelectors") or [])],
            verified=bool(raw.get("verified", False)),
        )

    libs = data.get("ExternalLibraries") or {}
    return DeployedState(
        diamond_address=str(data.get("DiamondAddress") or ""),
        deployer_address=str(data.get("DeployerAddress") or ""),
        facets=facets,
        external_libraries={str(k): str(v) for k, v in libs.items()} if isinstance(libs, dict) else {},
        protocol_version=_opt_version(data.get("protocolVersion")),
        pending_post_cut=_pending_from_dict(data.get("PendingPostCut")),
    )


def state_to_dict(state: DeployedState) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if state.diamond_address:
        out["DiamondAddress"] = state.diamond_address
    if state.deployer_address:
        out["DeployerAddress"] = state.deployer_address
    out["DeployedFacets"] = {
        name: {
            "address": f.address,
            "tx_hash": f.tx_hash,
            "version": f.version,
            "funcSelectors": list(f.selectors),
            "verified": f.verified,
        }
        for name, f in sorted(state.facets.items())
    }
    out["ExternalLibraries"] = dict(sorted(state.external_libraries.items()))
    if state.protocol_version is not None:
        out["protocolVersion"] = state.protocol_version
    if state.pending_post_cut:
        out["PendingPostCut"] = {
            name: {
                "version": p.version,
                "initializer": p.initializer,
                "callbacks": list(p.callbacks),
                "initialized": p.initialized,
            }
            for name, p in sorted(state.pending_post_cut.items())
        }
    return out


class JsonDeployedStateStore:
    """Deployed-state document on local disk, rewritten atomically after every mutation."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> DeployedState:
        data = read_json_document(self.path, "deployed state")
        if data is None:
            return DeployedState()
        return state_from_dict(data)

    def save(self, state: DeployedState) -> None:
        write_json_document(self.path, state_to_dict(state))

    def describe(self) -> Dict[str, Any]:
        return {"class": self.__class__.__name__, "path": str(self.path)}
