from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Tuple

RunMode = Literal["deploy", "upgrade"]

# Ordered deployment protocol. Every hook phase is a no-op unless work is attached.
PHASES: Tuple[str, ...] = (
    "pre_deploy_diamond",
    "deploy_diamond",
    "post_deploy_diamond",
    "pre_deploy_facets",
    "deploy_facets",
    "post_deploy_facets",
    "pre_update_selector_registry",
    "update_selector_registry",
    "post_update_selector_registry",
    "pre_perform_cut",
    "perform_cut",
    "post_perform_cut",
    "pre_run_callbacks",
    "run_callbacks",
    "post_run_callbacks",
)

DIAMOND_PHASES: Tuple[str, ...] = PHASES[:3]


def phases_for(mode: RunMode) -> Tuple[str, ...]:
    """Upgrade skips the diamond phases; the proxy already exists."""
    if mode == "deploy":
        return PHASES
    if mode == "upgrade":
        return tuple(p for p in PHASES if p not in DIAMOND_PHASES)
    raise ValueError(f"unknown run mode: {mode!r}")


@dataclass
class PhaseCursor:
    """Position of a run in its phase list."""

    phases: Tuple[str, ...]
    index: int = 0
    completed: List[str] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.index >= len(self.phases)

    @property
    def current(self) -> str:
        return "" if self.done else self.phases[self.index]

    @property
    def last_successful(self) -> str:
        return self.completed[-1] if self.completed else ""

    def advance(self) -> None:
        if self.done:
            raise IndexError("phase cursor already exhausted")
        self.completed.append(self.phases[self.index])
        self.index += 1
