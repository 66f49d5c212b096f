from __future__ import annotations

from .cut_planner import apply_cut, plan_cut, selector_owners
from .selectors import canonical_signature, function_selector, interface_selectors, resolve_facet_selectors
from .versions import resolve_facet_version, resolve_versions

__all__ = [
    "apply_cut",
    "plan_cut",
    "selector_owners",
    "canonical_signature",
    "function_selector",
    "interface_selectors",
    "resolve_facet_selectors",
    "resolve_facet_version",
    "resolve_versions",
]
