from __future__ import annotations

from typing import Dict, List, Mapping

from ..infra.models import DeployedState


UNKNOWN_FACET = "unknown"


def compare_facet_selectors(state: DeployedState, onchain: Mapping[str, str]) -> Dict[str, Dict[str, List[str]]]:
    """Compare recorded selectors with the chain's selector -> facet address map.

    Per facet: selectors the chain routes to it that are not recorded
    (extra_on_chain), recorded selectors the chain does not route to it
    (missing_on_chain), and the agreeing ones (matched). Selectors routed to an
    address no recorded facet has are reported under "unknown".
    """
    by_address: Dict[str, str] = {}
    for name, facet in state.facets.items():
        if facet.address:
            by_address[facet.address.lower()] = name

    chain_by_facet: Dict[str, set] = {}
    for sel, address in onchain.items():
        owner = by_address.get(str(address).lower(), UNKNOWN_FACET)
        chain_by_facet.setdefault(owner, set()).add(sel.lower())

    report: Dict[str, Dict[str, List[str]]] = {}
    for name in sorted(set(state.facets) | set(chain_by_facet)):
        recorded = {s.lower() for s in state.facets[name].selectors} if name in state.facets else set()
        live = chain_by_facet.get(name, set())
        report[name] = {
            "extra_on_chain": sorted(live - recorded),
            "missing_on_chain": sorted(recorded - live),
            "matched": sorted(recorded & live),
        }
    return report


def has_drift(report: Mapping[str, Mapping[str, List[str]]]) -> bool:
    return any(r["extra_on_chain"] or r["missing_on_chain"] for r in report.values())
