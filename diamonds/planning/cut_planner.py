from __future__ import annotations

import copy
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ..infra.errors import ConfigurationInvalidError, SelectorCollisionError
from ..infra.models import (
    DIAMOND_CUT_FACET,
    CutOperation,
    DeployedFacet,
    DeployedState,
    DesiredConfiguration,
    FacetResolution,
    Version,
)


_ACTION_ORDER = {"Remove": 0, "Replace": 1, "Add": 2}


def selector_owners(state: DeployedState) -> Dict[str, str]:
    """selector -> owning facet name. The deployed state must give each selector one owner."""
    owners: Dict[str, str] = {}
    for name, facet in state.facets.items():
        for sel in facet.selectors:
            s = sel.lower()
            if s in owners and owners[s] != name:
                raise SelectorCollisionError(
                    f"deployed state maps selector {s} to both {owners[s]!r} and {name!r}",
                    selector=s,
                    facets=[owners[s], name],
                )
            owners[s] = name
    return owners


def facet_sort_key(name: str, config: DesiredConfiguration) -> Tuple[int, float, str]:
    facet = config.facets.get(name)
    priority = facet.priority if facet is not None else None
    if priority is None:
        return (1, 0.0, name)
    return (0, float(priority), name)


def _same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def plan_cut(
    state: DeployedState,
    config: DesiredConfiguration,
    resolutions: Mapping[str, FacetResolution],
    selectors: Mapping[str, Iterable[str]],
    facet_addresses: Optional[Mapping[str, str]] = None,
) -> List[CutOperation]:
    """Diff desired against deployed selector ownership into an ordered cut.

    `selectors` holds the resolved selector set of every facet that needs a cut.
    `facet_addresses` holds addresses of facets deployed during this run; an
    upgraded facet without one is treated as keeping its current address.

    The result has one operation per (facet, action), ordered by facet priority
    and, within a facet, Remove before Replace before Add.
    """
    new_addresses = {k: v for k, v in (facet_addresses or {}).items() if v}
    owners = selector_owners(state)

    changing = [name for name, r in resolutions.items() if r.needs_cut]
    absent = [name for name in state.facets if name not in config.facets and name != DIAMOND_CUT_FACET]
    relinquishing: Set[str] = set(changing) | set(absent)

    desired: Dict[str, Set[str]] = {}
    claims: Dict[str, str] = {}
    for name in changing:
        if name not in selectors:
            raise ConfigurationInvalidError(f"no resolved selectors for facet {name!r}")
        desired[name] = {s.lower() for s in selectors[name]}
        for s in desired[name]:
            if s in claims:
                raise SelectorCollisionError(
                    f"selector {s} is claimed by both {claims[s]!r} and {name!r}",
                    selector=s,
                    facets=[claims[s], name],
                )
            claims[s] = name

    buckets: Dict[Tuple[str, str], Set[str]] = {}
    targets: Dict[str, Optional[str]] = {}

    def _emit(action: str, facet: str, sel: str) -> None:
        buckets.setdefault((facet, action), set()).add(sel)

    for name in changing:
        prior = state.facets.get(name)
        prior_address = prior.address if prior is not None else ""
        new_address = new_addresses.get(name, "")
        moved_here = bool(new_address and prior_address and not _same_address(new_address, prior_address))
        targets[name] = new_address or prior_address or None

        for s in sorted(desired[name]):
            owner = owners.get(s)
            if owner is None:
                _emit("Add", name, s)
            elif owner == name:
                if moved_here:
                    _emit("Replace", name, s)
            elif owner in relinquishing:
                _emit("Replace", name, s)
            else:
                raise SelectorCollisionError(
                    f"selector {s} wanted by {name!r} is owned by retained facet {owner!r}",
                    selector=s,
                    facets=[owner, name],
                )

        if prior is not None:
            for s in prior.selectors:
                s = s.lower()
                if s not in desired[name] and s not in claims:
                    _emit("Remove", name, s)

    for name in absent:
        for s in state.facets[name].selectors:
            s = s.lower()
            if s not in claims:
                _emit("Remove", name, s)

    ops: List[CutOperation] = []
    for facet, action in sorted(buckets, key=lambda k: (facet_sort_key(k[0], config), _ACTION_ORDER[k[1]])):
        ops.append(
            CutOperation(
                action=action,  # type: ignore[arg-type]
                facet_name=facet,
                facet_address=None if action == "Remove" else targets.get(facet),
                selectors=tuple(sorted(buckets[(facet, action)])),
            )
        )

    assert_disjoint(ops)
    return ops


def assert_disjoint(operations: Iterable[CutOperation]) -> None:
    seen: Dict[str, str] = {}
    for op in operations:
        for s in op.selectors:
            if s in seen:
                raise SelectorCollisionError(
                    f"selector {s} appears in two operations ({seen[s]} and {op.action} {op.facet_name})",
                    selector=s,
                    facets=[seen[s].split(" ", 1)[-1], op.facet_name],
                )
            seen[s] = f"{op.action} {op.facet_name}"


def apply_cut(
    state: DeployedState,
    operations: Iterable[CutOperation],
    *,
    versions: Optional[Mapping[str, Version]] = None,
    facet_addresses: Optional[Mapping[str, str]] = None,
    tx_hashes: Optional[Mapping[str, str]] = None,
    protocol_version: Optional[Version] = None,
) -> DeployedState:
    """Fold a confirmed cut into a copy of the deployed state.

    Facets left without selectors are dropped, unless they were deployed at a
    new version in this run.
    """
    out = copy.deepcopy(state)
    versions = dict(versions or {})
    facet_addresses = {k: v for k, v in (facet_addresses or {}).items() if v}
    tx_hashes = dict(tx_hashes or {})
    for rec in out.facets.values():
        rec.selectors = [s.lower() for s in rec.selectors]
    owners = selector_owners(out)

    def _facet(name: str) -> DeployedFacet:
        if name not in out.facets:
            out.facets[name] = DeployedFacet()
        return out.facets[name]

    for op in operations:
        for s in op.selectors:
            owner = owners.pop(s, None)
            if owner is not None and s in out.facets[owner].selectors:
                out.facets[owner].selectors.remove(s)
            if op.action == "Remove":
                continue
            rec = _facet(op.facet_name)
            rec.selectors.append(s)
            owners[s] = op.facet_name
            if op.facet_address:
                rec.address = op.facet_address

    for name, address in facet_addresses.items():
        _facet(name).address = address
    for name, version in versions.items():
        rec = _facet(name)
        rec.version = version
        rec.verified = False
    for name, tx in tx_hashes.items():
        if name in out.facets:
            out.facets[name].tx_hash = tx

    for name in list(out.facets):
        rec = out.facets[name]
        rec.selectors = sorted(set(rec.selectors))
        if not rec.selectors and name not in versions:
            del out.facets[name]

    if protocol_version is not None:
        out.protocol_version = protocol_version
    return out
